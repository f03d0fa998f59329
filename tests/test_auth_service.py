import pytest

from app import auth, crud


async def test_password_hash_is_salted_bcrypt():
    first = await auth.get_password_hash("hunter2")
    second = await auth.get_password_hash("hunter2")

    assert first != second
    assert first.startswith(f"$2b${auth.BCRYPT_ROUNDS}$")
    assert await auth.verify_password("hunter2", first)
    assert not await auth.verify_password("hunter3", first)


async def test_validate_credentials_returns_user(db, make_user):
    user = await make_user("alice", "wonderland")

    found = await auth.AuthService().validate_credentials(db, "alice", "wonderland")

    assert found.id == user.id


async def test_unknown_user_and_wrong_password_fail_the_same_way(db, make_user):
    await make_user("alice", "wonderland")
    service = auth.AuthService()

    with pytest.raises(auth.InvalidCredentialsError) as wrong_password:
        await service.validate_credentials(db, "alice", "nope")
    with pytest.raises(auth.InvalidCredentialsError) as unknown_user:
        await service.validate_credentials(db, "mallory", "wonderland")

    assert str(wrong_password.value) == str(unknown_user.value) == "invalid username or password"


async def test_inactive_user_cannot_authenticate(db, make_user):
    user = await make_user("alice", "wonderland")
    await crud.deactivate_user(db, user.id)

    with pytest.raises(auth.InvalidCredentialsError):
        await auth.AuthService().validate_credentials(db, "alice", "wonderland")


async def test_malformed_hash_is_not_a_credential_mismatch(db):
    await crud.create_user(db, username="broken", email="broken@example.com", password_hash="not-a-hash")

    with pytest.raises(auth.PasswordComparisonError):
        await auth.AuthService().validate_credentials(db, "broken", "whatever")
