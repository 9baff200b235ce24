"""
Configuration tests:
  - Production requires a database URL and nothing else
  - No signing secret is carried by any environment
"""

import pytest

from app.config import Config, ProductionConfig, config


class TestProductionConfig:

    def test_database_url_required(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            ProductionConfig.validate()

    def test_valid_without_secret_key(self, monkeypatch):
        monkeypatch.delenv("SECRET_KEY", raising=False)
        monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI",
                            "postgresql://workflow@db/workflow")
        ProductionConfig.validate()

    @pytest.mark.parametrize("name", ["development", "testing", "production"])
    def test_no_secret_key(self, name):
        assert not hasattr(config[name], "SECRET_KEY")
        assert not hasattr(Config, "SECRET_KEY")
