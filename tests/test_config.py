from media_ingest.config import load_config
from media_ingest.config import load_config_string
from media_ingest.config import MediaConfig
from media_ingest.config import variant_table
from media_ingest.ingest import MediaIngestor
from media_ingest.s3client import R2ObjectStore
from media_ingest.s3client import RailwayObjectStore
from media_ingest.store import LocalObjectStore

import pytest
import ZConfig


def _local_config(root, extra=""):
    return f"""\
        {extra}
        <localstore>
            root {root}
        </localstore>
        """


class TestVariantTable:
    def test_parse(self):
        assert variant_table("sm:400 md:800 lg:1600") == (
            ("sm", 400),
            ("md", 800),
            ("lg", 1600),
        )

    @pytest.mark.parametrize("value", ["", "sm", "sm:", "sm:abc", ":400", "sm:0"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            variant_table(value)


class TestLocalStore:
    def test_creates_store(self, tmp_path):
        config = load_config_string(_local_config(tmp_path / "media"))
        assert isinstance(config, MediaConfig)
        store = config.open_store()
        assert isinstance(store, LocalObjectStore)
        assert store.root == str(tmp_path / "media")
        assert store.url_prefix == "/media"

    def test_url_prefix(self, tmp_path):
        config = load_config_string(
            f"""\
            <localstore>
                root {tmp_path}
                url-prefix /static/gallery
            </localstore>
            """
        )
        assert config.open_store().url_prefix == "/static/gallery"

    def test_default_values(self, tmp_path):
        config = load_config_string(_local_config(tmp_path))
        keys = config.key_builder()
        assert (keys.image_prefix, keys.video_prefix, keys.category) == (
            "images",
            "videos",
            "gallery",
        )
        generator = config.variant_generator()
        assert generator.variants == (("sm", 400), ("md", 800), ("lg", 1600))
        assert generator.quality == 85
        # Default TTL is 7 days
        assert config.signed_url_ttl == 604800

    def test_all_options(self, tmp_path):
        config = load_config_string(
            _local_config(
                tmp_path,
                extra="""
                image-prefix media/images
                video-prefix media/videos
                category portfolio
                variants thumb:200 full:1200
                quality 70
                signed-url-ttl 3600
                """,
            )
        )
        ingestor = config.open_ingestor()
        assert isinstance(ingestor, MediaIngestor)
        assert ingestor.signed_url_ttl == 3600
        assert ingestor.generator.variants == (("thumb", 200), ("full", 1200))
        assert ingestor.generator.quality == 70
        assert ingestor.keys.image_key("a", "deadbeef", "thumb") == (
            "media/images/portfolio/a-deadbeef-thumb.webp"
        )

    def test_open_ingestor_with_given_store(self, tmp_path):
        config = load_config_string(_local_config(tmp_path / "unused"))
        store = LocalObjectStore(str(tmp_path / "other"))
        assert config.open_ingestor(store).store is store

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "media.conf"
        path.write_text(_local_config(tmp_path / "media"))
        config = load_config(str(path))
        assert isinstance(config.open_store(), LocalObjectStore)


class TestRemoteStores:
    def test_r2(self):
        config = load_config_string(
            """\
            <r2store>
                account-id abc123
                bucket-name gallery
                access-key key
                secret-key secret
                public-base-url https://media.example.com
            </r2store>
            """
        )
        store = config.open_store()
        assert isinstance(store, R2ObjectStore)
        assert store.bucket_name == "gallery"
        assert store.public_base_url == "https://media.example.com"

    def test_railway(self):
        config = load_config_string(
            """\
            <railwaystore>
                bucket-name gallery
                endpoint-url https://storage.railway.example
                access-key key
                secret-key secret
            </railwaystore>
            """
        )
        store = config.open_store()
        assert isinstance(store, RailwayObjectStore)
        assert store._client.meta.region_name == "us-east-1"

    def test_missing_required_key(self):
        with pytest.raises(ZConfig.ConfigurationError):
            load_config_string(
                """\
                <r2store>
                    bucket-name gallery
                    access-key key
                    secret-key secret
                </r2store>
                """
            )


class TestInvalidConfig:
    def test_store_required(self):
        with pytest.raises(ZConfig.ConfigurationError):
            load_config_string("quality 80\n")

    def test_bad_variants(self, tmp_path):
        with pytest.raises(ZConfig.ConfigurationError):
            load_config_string(_local_config(tmp_path, extra="variants sm=400"))

    @pytest.mark.parametrize("ttl", ["1209600", "0"])
    def test_signed_url_ttl_out_of_range(self, tmp_path, ttl):
        with pytest.raises(ZConfig.ConfigurationError):
            load_config_string(_local_config(tmp_path, extra=f"signed-url-ttl {ttl}"))

    def test_two_stores_rejected(self, tmp_path):
        with pytest.raises(ZConfig.ConfigurationError):
            load_config_string(
                _local_config(tmp_path)
                + """
                <railwaystore>
                    bucket-name gallery
                    endpoint-url https://storage.railway.example
                    access-key key
                    secret-key secret
                </railwaystore>
                """
            )
