# esdoctor/stats.py
"""
Utilidades numéricas usadas por los chequeos: percentiles por buckets,
máximo común divisor, fracciones reducidas y formato de bytes.
"""

KB = 1024.0
MB = KB * 1024
GB = MB * 1024
TB = GB * 1024
PB = TB * 1024


def percentiles(values, buckets):
    """
    Calcula percentiles de una secuencia de números. `buckets` controla la
    precisión: el resultado tiene `buckets + 1` puntos, donde el primero es el
    mínimo (p0) y el último el máximo (p100).

    Por ejemplo, con buckets=10 el resultado tiene 11 valores:
      out[0]  -> mínimo
      out[1]  -> p10
      out[5]  -> p50
      out[10] -> máximo

    La entrada no se modifica (se ordena una copia).
    """
    if buckets < 1:
        raise ValueError(f"buckets must be at least 1, got {buckets}")
    ordered = sorted(values)
    if not ordered:
        raise ValueError("cannot calculate percentiles of an empty sequence")

    length = len(ordered)
    result = [ordered[_percentile_idx(i, buckets, length)] for i in range(buckets)]
    result.append(ordered[-1])
    return result


def _percentile_idx(idx, buckets, length):
    return idx * length // buckets


def gcd(a, b):
    """
    Máximo común divisor por el algoritmo de Euclides. Las entradas negativas
    se normalizan a su valor absoluto y gcd(0, 0) es 0 por convención.
    """
    a, b = abs(a), abs(b)
    while True:
        if a == 0:
            return b
        if b == 0:
            return a
        a, b = b, a % b


def pct(part, whole):
    return part / whole * 100.0


def fraction(a, b):
    """Devuelve (a, b) reducidos por su mcd y el porcentaje de a sobre b."""
    divisor = gcd(a, b)
    return a // divisor, b // divisor, pct(a, b)


def humanize_bytes(num_bytes):
    num_bytes = float(num_bytes)
    if num_bytes < KB:
        return f"{int(num_bytes)}b"
    for unit, size in (("kb", KB), ("mb", MB), ("gb", GB), ("tb", TB)):
        if num_bytes < size * 1024:
            return f"{num_bytes / size:.1f}{unit}"
    return f"{num_bytes / PB:.1f}pb"
