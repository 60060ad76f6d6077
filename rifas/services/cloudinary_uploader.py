from typing import Optional

import cloudinary
from cloudinary.uploader import upload as cloudinary_upload
from fastapi import UploadFile

from rifas.core.errors import ConfigurationError, InvalidRequest, StorageError
from rifas.core.settings import Settings, settings


def is_configured(cfg: Settings = settings) -> bool:
    return bool(cfg.cloudinary_cloud_name and cfg.cloudinary_api_key and cfg.cloudinary_api_secret)


def upload_bytes(content: bytes, cfg: Settings = settings, folder: Optional[str] = None) -> str:
    """Sube un comprobante a Cloudinary y devuelve ``secure_url``."""
    if not is_configured(cfg):
        raise ConfigurationError("Cloudinary no está configurado (faltan variables de entorno)")
    if not content:
        raise InvalidRequest("El archivo del comprobante está vacío")

    cloudinary.config(
        cloud_name=cfg.cloudinary_cloud_name,
        api_key=cfg.cloudinary_api_key,
        api_secret=cfg.cloudinary_api_secret,
        secure=True,
    )
    try:
        res = cloudinary_upload(content, folder=folder or cfg.payments_folder, resource_type="image")
    except Exception as e:
        raise StorageError("cloudinary_upload", e) from e
    url = res.get("secure_url") or res.get("url")
    if not url:
        raise StorageError("cloudinary_upload", RuntimeError("Cloudinary no devolvió URL"))
    return url


async def upload_file(file: UploadFile, cfg: Settings = settings, folder: Optional[str] = None) -> str:
    content = await file.read()
    return upload_bytes(content, cfg, folder)
