from backend.config import Settings


def test_prefers_new_supabase_keys_over_legacy() -> None:
    settings = Settings(
        supabase_publishable_key="sb_publishable_new",
        supabase_anon_key="legacy_anon",
        supabase_secret_key="sb_secret_new",
        supabase_service_role_key="legacy_service",
    )
    assert settings.effective_supabase_publishable_key == "sb_publishable_new"
    assert settings.effective_supabase_secret_key == "sb_secret_new"


def test_falls_back_to_legacy_supabase_keys() -> None:
    settings = Settings(
        supabase_anon_key="legacy_anon",
        supabase_service_role_key="legacy_service",
    )
    assert settings.effective_supabase_publishable_key == "legacy_anon"
    assert settings.effective_supabase_secret_key == "legacy_service"


def test_cors_origins_split_on_commas() -> None:
    settings = Settings(cors_origins="http://localhost:3000, https://app.example.com,")
    assert settings.cors_origin_list == ["http://localhost:3000", "https://app.example.com"]


def test_yaml_sections_are_loaded() -> None:
    settings = Settings()
    assert settings.schedule.prepare_day_of_month == 24
    assert settings.sync.max_retries == 5
