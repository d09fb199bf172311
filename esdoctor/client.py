# esdoctor/client.py
import logging
import requests
import urllib3
from .config import HEADERS, REQUEST_TIMEOUT_S


class CollectionError(Exception):
    """Error al recolectar datos del clúster. Siempre es fatal para la ejecución."""


class TransportError(CollectionError):
    pass


class StatusError(CollectionError):
    def __init__(self, url, status_code):
        super().__init__(f"failed to fetch {url}, got status code {status_code} from ES")
        self.url = url
        self.status_code = status_code


class DecodeError(CollectionError):
    pass


class CancelledError(CollectionError):
    pass


class ElasticsearchClient:
    """Gestiona la conexión y las peticiones a la API de Elasticsearch."""
    def __init__(self, host, verify_ssl=False, timeout=REQUEST_TIMEOUT_S, logger=None, session=None):
        if not host:
            raise ValueError("Elasticsearch endpoint is required (argument or ES_HOST)")
        self.base_url = host.rstrip("/")
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.log = logger or logging.getLogger("esdoctor.client")
        self.session = session or requests.Session()
        if not verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    @property
    def endpoint(self):
        return self.base_url

    def url(self, path):
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(self, path, params=None, cancel_event=None):
        url = self.url(path)
        if cancel_event is not None and cancel_event.is_set():
            raise CancelledError(f"request to {url} cancelled")

        self.log.debug(f"GET {url} params={params}")
        try:
            response = self.session.get(url, verify=self.verify_ssl, headers=HEADERS, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            self.log.warning(f"Fallo en petición GET a {url}: {e}")
            raise TransportError(f"failed to fetch {url}: {e}") from e

        if response.status_code != 200:
            self.log.warning(f"Respuesta {response.status_code} desde {url}")
            raise StatusError(url, response.status_code)
        return response

    def get(self, path, params=None, cancel_event=None):
        """GET que devuelve el cuerpo JSON decodificado."""
        response = self._request(path, params, cancel_event)
        try:
            return response.json()
        except ValueError as e:  # requests lanza una subclase de ValueError con JSON inválido
            self.log.warning(f"Respuesta no es JSON válido desde {response.url}")
            raise DecodeError(f"failed to json decode the response from {path}: {e}") from e

    def get_text(self, path, params=None, cancel_event=None):
        """GET que devuelve el cuerpo en texto plano (por ejemplo `_nodes/hot_threads`)."""
        return self._request(path, params, cancel_event).text
