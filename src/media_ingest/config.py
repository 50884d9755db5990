from media_ingest.store import check_ttl

import io
import os
import ZConfig


SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schema.xml")


def variant_table(value):
    """ZConfig datatype: "sm:400 md:800" -> (("sm", 400), ("md", 800))."""
    table = []
    for item in value.split():
        name, sep, width = item.partition(":")
        if not sep or not name or not width.isdigit() or int(width) <= 0:
            raise ValueError(f"Invalid variant {item!r}, expected name:width")
        table.append((name, int(width)))
    if not table:
        raise ValueError("At least one variant is required")
    return tuple(table)


def signed_url_ttl(value):
    """ZConfig datatype: lifetime of signed read URLs, at most seven days."""
    return check_ttl(value)


class BaseFactory:
    """ZConfig section factory; open() builds the configured object."""

    def __init__(self, config):
        self.config = config
        self.name = config.getSectionName()

    def open(self):
        raise NotImplementedError


class LocalStoreFactory(BaseFactory):
    def open(self):
        from media_ingest.store import LocalObjectStore

        return LocalObjectStore(self.config.root, url_prefix=self.config.url_prefix)


class R2StoreFactory(BaseFactory):
    def open(self):
        from media_ingest.s3client import R2ObjectStore

        config = self.config
        return R2ObjectStore(
            account_id=config.account_id,
            bucket_name=config.bucket_name,
            access_key_id=config.access_key,
            secret_access_key=config.secret_key,
            public_base_url=config.public_base_url,
        )


class RailwayStoreFactory(BaseFactory):
    def open(self):
        from media_ingest.s3client import RailwayObjectStore

        config = self.config
        return RailwayObjectStore(
            bucket_name=config.bucket_name,
            endpoint_url=config.endpoint_url,
            access_key_id=config.access_key,
            secret_access_key=config.secret_key,
            region_name=config.region,
        )


class MediaConfig:
    """Top-level configuration. Builds the objects the ingestor needs."""

    def __init__(self, config):
        self.config = config
        self.store = config.store
        self.signed_url_ttl = config.signed_url_ttl

    def open_store(self):
        return self.store.open()

    def key_builder(self):
        from media_ingest.naming import KeyBuilder

        return KeyBuilder(
            image_prefix=self.config.image_prefix,
            video_prefix=self.config.video_prefix,
            category=self.config.category,
        )

    def variant_generator(self):
        from media_ingest.variants import VariantGenerator

        return VariantGenerator(
            variants=self.config.variants, quality=self.config.quality
        )

    def open_ingestor(self, store=None):
        from media_ingest.ingest import MediaIngestor

        return MediaIngestor(
            store if store is not None else self.open_store(),
            keys=self.key_builder(),
            generator=self.variant_generator(),
            signed_url_ttl=self.signed_url_ttl,
        )


def load_schema():
    return ZConfig.loadSchema(SCHEMA_PATH)


def load_config(path):
    config, _handlers = ZConfig.loadConfig(load_schema(), path)
    return config


def load_config_string(text):
    config, _handlers = ZConfig.loadConfigFile(load_schema(), io.StringIO(text))
    return config
