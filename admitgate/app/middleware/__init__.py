"""Middleware package for the admission gateway."""

from admitgate.app.middleware.admission import AdmissionMiddleware, build_descriptor

__all__ = [
    "AdmissionMiddleware",
    "build_descriptor",
]
