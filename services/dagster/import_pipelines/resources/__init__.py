"""Dagster Resources - External Service Connections."""

from .geocoding_resource import GeocodingResource
from .minio_resource import MinIOResource
from .mongodb_resource import MongoDBResource

__all__ = [
    "GeocodingResource",
    "MinIOResource",
    "MongoDBResource",
]
