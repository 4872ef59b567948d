from importlib import reload

from sqlalchemy import text


def test_database_engine_uses_configured_url():
    from speechdesk import config
    from speechdesk.db import database

    assert str(database.engine.url) == config.settings.DATABASE_URL
    with database.engine.connect() as conn:
        assert conn.execute(text("SELECT 1")).scalar() == 1


def test_settings_from_env(monkeypatch):
    from speechdesk import config as config_module

    with monkeypatch.context() as m:
        m.setenv("JOB_MAX_ATTEMPTS", "5")
        m.setenv("JOB_BACKOFF", "5, 10")
        m.setenv("STT_API_KEY", "secret")
        m.setenv("CELERY_TASK_ALWAYS_EAGER", "true")
        m.setenv("MAX_UPLOAD_SIZE_MB", "2")
        reload(config_module)

        assert config_module.settings.JOB_MAX_ATTEMPTS == 5
        assert config_module.settings.JOB_BACKOFF == (5, 10)
        assert config_module.settings.STT_API_KEY == "secret"
        assert config_module.settings.CELERY_TASK_ALWAYS_EAGER is True
        assert config_module.settings.max_upload_size_bytes == 2 * 1024 * 1024

    reload(config_module)


def test_empty_env_values_fall_back_to_defaults(monkeypatch):
    from speechdesk import config as config_module

    with monkeypatch.context() as m:
        m.setenv("CELERY_BROKER_URL", "")
        m.setenv("PROVIDER_TIMEOUT", "")
        m.delenv("JOB_BACKOFF", raising=False)
        reload(config_module)

        assert config_module.settings.CELERY_BROKER_URL == "redis://broker:6379/0"
        assert config_module.settings.PROVIDER_TIMEOUT == 300
        assert config_module.settings.JOB_BACKOFF == (30, 60, 120)

    reload(config_module)
