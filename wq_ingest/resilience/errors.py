"""Errores de dependencias externas."""

from __future__ import annotations


class StoreUnavailable(Exception):
    """El store no respondió (caído, timeout o error de conexión).

    Es un fallo transitorio: el llamador reintenta con backoff acotado y
    luego degrada (alerta descartada / escritura pospuesta).
    """

    def __init__(self, store: str, reason: str):
        self.store = store
        self.reason = reason
        super().__init__(f"{store} unavailable: {reason}")
