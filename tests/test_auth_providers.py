import pytest

from auth_providers import (
    DatabaseAuthProvider,
    DuplicateUserError,
    EmailNotConfirmedError,
    InMemoryAuthProvider,
    InvalidCredentialsError,
    get_auth_provider,
    get_password_hash,
    role_for_email,
    set_auth_provider,
    verify_password,
)


@pytest.fixture(params=["database", "memory"])
def provider(request):
    return DatabaseAuthProvider() if request.param == "database" else InMemoryAuthProvider()


def _create(provider, email="Person@Example.com"):
    return provider.create_user(email=email, password="secret123", username="person", full_name="Some Person")


def test_password_hashing():
    hashed = get_password_hash("secret123")
    assert hashed.startswith("$argon2")
    assert verify_password("secret123", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("secret123", None)
    assert not verify_password("secret123", "not-a-hash")


def test_roles_come_from_configured_emails(monkeypatch):
    monkeypatch.setenv("ADMIN_EMAILS", "boss@example.com")
    monkeypatch.setenv("SUPER_ADMIN_EMAILS", "owner@example.com, root@example.com")

    assert role_for_email("Boss@Example.com") == "admin"
    assert role_for_email("root@example.com") == "super_admin"
    assert role_for_email("someone@example.com") == "user"


def test_create_and_authenticate(provider):
    user = _create(provider)

    assert user.email == "person@example.com"
    assert user.role == "user"
    assert user.email_confirmed_at is not None

    signed_in = provider.authenticate("PERSON@example.com", "secret123")
    assert signed_in.id == user.id
    assert signed_in.last_sign_in_at is not None
    with pytest.raises(InvalidCredentialsError):
        provider.authenticate("person@example.com", "wrong")
    with pytest.raises(InvalidCredentialsError):
        provider.authenticate("nobody@example.com", "secret123")


def test_duplicate_email_is_rejected(provider):
    _create(provider)
    with pytest.raises(DuplicateUserError):
        _create(provider, email="person@example.com")


def test_update_ignores_unknown_fields(provider):
    user = _create(provider)

    updated = provider.update_user(user.id, full_name="New Name", is_active=False, email="hijack@example.com")

    assert updated.full_name == "New Name"
    assert updated.is_active is False
    assert updated.email == "person@example.com"
    assert provider.get_user(user.id).full_name == "New Name"


def test_set_password_and_delete(provider):
    user = _create(provider)
    provider.set_password(user.id, "another-secret")

    assert provider.authenticate("person@example.com", "another-secret").id == user.id
    assert provider.delete_user(user.id) is True
    assert provider.delete_user(user.id) is False
    assert provider.get_user(user.id) is None
    assert provider.list_users() == []


def test_unconfirmed_database_users_cannot_sign_in(monkeypatch):
    monkeypatch.setenv("REQUIRE_EMAIL_CONFIRMATION", "true")
    provider = DatabaseAuthProvider()
    user = _create(provider)

    assert user.email_confirmed_at is None
    with pytest.raises(EmailNotConfirmedError):
        provider.authenticate("person@example.com", "secret123")


def test_oauth_upsert_reuses_existing_accounts():
    provider = DatabaseAuthProvider()
    created = provider.upsert_oauth_user("new@example.com", full_name="New User", avatar_url="https://a.test/x.png")
    again = provider.upsert_oauth_user("NEW@example.com")

    assert created.id == again.id
    assert created.username == "new"
    assert again.avatar_url == "https://a.test/x.png"
    assert len(provider.list_users()) == 1


def test_memory_provider_has_no_oauth():
    with pytest.raises(NotImplementedError):
        InMemoryAuthProvider().upsert_oauth_user("a@example.com")


def test_backend_selection(monkeypatch):
    monkeypatch.setenv("DEV_AUTH", "true")
    set_auth_provider(None)
    assert isinstance(get_auth_provider(), InMemoryAuthProvider)

    monkeypatch.setenv("DEV_AUTH", "false")
    set_auth_provider(None)
    assert isinstance(get_auth_provider(), DatabaseAuthProvider)
