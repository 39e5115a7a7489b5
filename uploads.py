"""
Image host client.

Images are sent to Cloudinary as base64 data URIs through the cloudinary
SDK; the host returns the public URL the product record stores.
"""

import base64
import logging
import os
from typing import Dict, Optional

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

from errors import UpstreamFailure, ValidationError

logger = logging.getLogger(__name__)

CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")
CLOUDINARY_FOLDER = os.getenv("CLOUDINARY_FOLDER", "plant-shop-products")


def data_uri(data: bytes, content_type: str) -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


class ImageHost:
    def __init__(self, cloud_name: Optional[str] = None, api_key: Optional[str] = None,
                 api_secret: Optional[str] = None, folder: str = CLOUDINARY_FOLDER):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.folder = folder

    @property
    def configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    def upload(self, data: bytes, content_type: str) -> Dict[str, str]:
        if not content_type or not content_type.startswith("image/"):
            raise ValidationError("Only image files are allowed")
        if not self.configured:
            raise UpstreamFailure("Image host is not configured")

        cloudinary.config(
            cloud_name=self.cloud_name,
            api_key=self.api_key,
            api_secret=self.api_secret,
            secure=True,
        )
        try:
            result = cloudinary.uploader.upload(
                data_uri(data, content_type),
                folder=self.folder,
                resource_type="image",
            )
        except CloudinaryError as exc:
            logger.exception("Image upload failed")
            raise UpstreamFailure(f"Failed to upload image: {exc}")

        url = result.get("secure_url")
        if not url:
            raise UpstreamFailure("Image host returned no URL")
        logger.info("Uploaded image %s", result.get("public_id"))
        return {"url": url, "publicId": result.get("public_id")}


def get_image_host() -> ImageHost:
    return ImageHost(CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY, CLOUDINARY_API_SECRET)
