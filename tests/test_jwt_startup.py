"""
tests/test_jwt_startup.py — JWT Secret Validation at Startup
=============================================================

The API must refuse to start when JWT_SECRET is missing, blank, too short,
or a known weak default.
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from guildkeeper.api.deps import _load_jwt_secret, can_manage_guild


class TestJWTSecretValidation:
    def test_rejects_missing_secret(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("JWT_SECRET", None)
            with pytest.raises(RuntimeError, match="JWT_SECRET environment variable is not set"):
                _load_jwt_secret()

    def test_rejects_empty_secret(self):
        with patch.dict(os.environ, {"JWT_SECRET": ""}):
            with pytest.raises(RuntimeError, match="JWT_SECRET environment variable is not set"):
                _load_jwt_secret()

    @pytest.mark.parametrize("weak", ["guildkeeper-dev-secret-change-me", "change-me", "secret"])
    def test_rejects_known_weak_default(self, weak):
        with patch.dict(os.environ, {"JWT_SECRET": weak}):
            with pytest.raises(RuntimeError, match="known weak default"):
                _load_jwt_secret()

    def test_rejects_short_secret(self):
        with patch.dict(os.environ, {"JWT_SECRET": "tooshort"}):
            with pytest.raises(RuntimeError, match="too short"):
                _load_jwt_secret()

    def test_accepts_strong_secret(self):
        good_secret = "a" * 64
        with patch.dict(os.environ, {"JWT_SECRET": good_secret}):
            assert _load_jwt_secret() == good_secret


class TestGuildAccess:
    def test_string_and_int_ids(self):
        assert can_manage_guild({"guilds": ["1000"]}, 1000)
        assert can_manage_guild({"guilds": [1000]}, 1000)

    def test_missing_or_other(self):
        assert not can_manage_guild({"guilds": ["1001"]}, 1000)
        assert not can_manage_guild({}, 1000)
        assert not can_manage_guild({"guilds": None}, 1000)
