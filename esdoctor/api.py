# esdoctor/api.py
import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel

from .analysis import ChecksFailedError
from .client import CollectionError, ElasticsearchClient
from .config import ES_HOST, VERIFY_SSL
from .diagnosis import diagnose
from .hotthreads import HotThreadsParseError
from .models import Comment

app = FastAPI(title="esdoctor API")
log = logging.getLogger("esdoctor.api")


class DiagnosisResponse(BaseModel):
    version: Optional[str]
    comments: List[Comment]
    failed_checks: int


def get_client():
    if not ES_HOST:
        raise HTTPException(status_code=503, detail="La variable de entorno ES_HOST no está configurada.")
    yield ElasticsearchClient(ES_HOST, verify_ssl=VERIFY_SSL, logger=log)


@app.get("/api/v1/diagnosis", response_model=DiagnosisResponse, tags=["Diagnóstico"])
def ep_diagnosis(client: ElasticsearchClient = Depends(get_client)):
    """Ejecuta una recolección completa y todos los chequeos; devuelve los comentarios."""
    try:
        diagnosis = diagnose(client, logger=log)
    except ChecksFailedError as e:
        diagnosis = e.diagnosis
    except (CollectionError, HotThreadsParseError) as e:
        raise HTTPException(status_code=503, detail=f"No se pudo recolectar el estado del clúster: {e}")

    version = diagnosis.graph.version
    return DiagnosisResponse(
        version=str(version) if version is not None else None,
        comments=diagnosis.comments.snapshot(),
        failed_checks=diagnosis.failed_checks,
    )


@app.get("/health", tags=["Sistema"])
def health_check():
    return {"status": "ok"}
