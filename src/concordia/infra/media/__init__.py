"""Concordia Infra Media -- media storage adapter."""

from concordia.infra.media.cloudinary import CloudinaryMediaStorage, sign_params
from concordia.infra.media.settings import CloudinarySettings, get_cloudinary_settings

__all__ = [
    "CloudinaryMediaStorage",
    "CloudinarySettings",
    "get_cloudinary_settings",
    "sign_params",
]
