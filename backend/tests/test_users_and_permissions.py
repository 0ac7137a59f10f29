import pytest

from hwpos.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from hwpos.models import User
from hwpos.permissions import (
    ALL_CAPABILITY_CODES,
    CAPABILITY_DEFINITIONS,
    CapabilityCategory,
    get_capabilities_by_category,
    get_capability_definition,
    validate_capability_code,
)
from hwpos.services import user_service
from hwpos.services.user_service import Actor, PasswordValidationError


class TestUsers:
    def test_password_is_hashed(self, db_session):
        user = user_service.create_user("jo", "Jo", "longenough1")

        assert user.password_hash != "longenough1"
        assert user_service.verify_password("longenough1", user.password_hash)
        assert not user_service.verify_password("wrong-password", user.password_hash)

    def test_short_password(self, db_session):
        with pytest.raises(PasswordValidationError):
            user_service.create_user("jo", "Jo", "short")
        assert db_session.query(User).count() == 0

    def test_duplicate_username(self, db_session):
        user_service.create_user("jo", "Jo", "longenough1")
        with pytest.raises(ConflictError):
            user_service.create_user("jo", "Jo Again", "longenough1")

    def test_unknown_capability(self, db_session):
        with pytest.raises(ValidationError):
            user_service.create_user("jo", "Jo", "longenough1", capabilities=["ACCESS_MOON"])

    def test_authenticate(self, db_session):
        user = user_service.create_user("jo", "Jo", "longenough1")

        assert user_service.authenticate("jo", "nope-nope") is None
        assert user_service.authenticate("ghost", "longenough1") is None
        assert user_service.authenticate("jo", "longenough1").id == user.id
        assert db_session.get(User, user.id).last_login_at is not None

        user_service.set_password(user.id, "newpassword1")
        assert user_service.authenticate("jo", "longenough1") is None
        assert user_service.authenticate("jo", "newpassword1").id == user.id

    def test_inactive_users(self, db_session):
        user = user_service.create_user("jo", "Jo", "longenough1")
        user_service.update_user(user.id, is_active=False)

        assert user_service.authenticate("jo", "longenough1") is None
        with pytest.raises(PermissionDeniedError):
            user_service.resolve_actor(user.id)

    def test_capabilities_are_replaced(self, db_session):
        user = user_service.create_user("jo", "Jo", "longenough1", capabilities=["ACCESS_POS", "ACCESS_DRAWER"])

        user = user_service.update_user(user.id, capabilities=["ACCESS_POS", "ACCESS_REPORTS"])

        assert user.capability_codes == frozenset({"ACCESS_POS", "ACCESS_REPORTS"})
        assert user.to_dict()["capabilities"] == ["ACCESS_POS", "ACCESS_REPORTS"]

    def test_resolve_actor(self, db_session):
        user = user_service.create_user("jo", "Jo", "longenough1", capabilities=["ACCESS_POS"])

        actor = user_service.resolve_actor(user.id)

        assert actor == Actor(user_id=user.id, is_admin=False, capabilities=frozenset({"ACCESS_POS"}))
        with pytest.raises(NotFoundError):
            user_service.resolve_actor(404)

    def test_malformed_hash_never_matches(self):
        assert user_service.verify_password("anything", "not-a-bcrypt-hash") is False


class TestActor:
    def test_admin_can_everything(self):
        assert Actor(user_id=1, is_admin=True).can("ACCESS_USERS")

    def test_capability_lookup(self):
        actor = Actor(user_id=2, capabilities=frozenset({"ACCESS_POS"}))
        assert actor.can("ACCESS_POS")
        assert not actor.can("ACCESS_USERS")

    def test_require_admin(self):
        user_service.require_admin(Actor(user_id=1, is_admin=True), "do things")
        with pytest.raises(PermissionDeniedError):
            user_service.require_admin(Actor(user_id=2), "do things")


class TestCapabilityDefinitions:
    def test_codes_are_unique(self):
        assert len(ALL_CAPABILITY_CODES) == len(CAPABILITY_DEFINITIONS)

    def test_lookup(self):
        definition = get_capability_definition("ACCESS_POS")
        assert definition["category"] == CapabilityCategory.SALES
        assert get_capability_definition("ACCESS_MOON") is None

    def test_validate(self):
        assert validate_capability_code("ACCESS_INVENTORY_ASSEMBLY")
        assert not validate_capability_code("access_pos")

    def test_by_category(self):
        codes = [cap[0] for cap in get_capabilities_by_category(CapabilityCategory.ADMINISTRATION)]
        assert codes == ["ACCESS_USERS", "ACCESS_SETTINGS"]
