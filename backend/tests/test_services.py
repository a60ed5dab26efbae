"""Service logic tests"""
import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import patch

import jwt

from app.core.config import settings
from app.core.exceptions import (
    DuplicateIdentityError, ForbiddenError, InvalidCredentialsError, NotFoundError,
    TokenExpiredError, TokenInvalidError, ValidationError
)
from app.core.security import require_role
from app.core.tokens import access_token_ttl_seconds, create_access_token, decode_access_token
from app.models.affiliate_link import AffiliateLink
from app.models.base import INTEGER_MAX
from app.models.user import User, UserRole
from app.services.admin_service import get_user_details, list_users
from app.services.auth_service import (
    authenticate_user, change_password, complete_password_reset,
    initiate_password_reset, login_user, register_user, serialize_user,
    validate_password_strength, verify_password, verify_token
)
from app.services.dashboard_service import get_dashboard
from app.services.link_service import generate_link, record_click
from app.services.reward_service import MAX_CREDIT_AMOUNT, compute_level, credit_entries

from conftest import TEST_PASSWORD

# 83 bytes; bcrypt only accepts 72
LONG_PASSWORD = "Aa1" + "x" * 80


@pytest.mark.critical
class TestRegistration:
    """Test account creation"""

    def test_register_returns_user_and_token(self, db_session):
        user, token = register_user("alice", "a@x.com", "Passw0rd", db_session)

        assert user.id is not None
        assert user.role == UserRole.USER
        assert (user.xp, user.level, user.entries) == (0, 1, 0)
        assert verify_token(token, db_session).id == user.id

    def test_password_is_never_stored_in_plaintext(self, db_session):
        user, _ = register_user("alice", "a@x.com", "Passw0rd", db_session)

        assert user.password_hash != "Passw0rd"
        assert "Passw0rd" not in user.password_hash
        assert verify_password("Passw0rd", user.password_hash)

    def test_duplicate_email_rejected_and_first_user_untouched(self, db_session):
        first, _ = register_user("alice", "a@x.com", "Passw0rd", db_session)
        original_hash = first.password_hash

        with pytest.raises(DuplicateIdentityError):
            register_user("alice2", "a@x.com", "Other1234", db_session)

        db_session.expire_all()
        users = db_session.query(User).filter(User.email == "a@x.com").all()
        assert len(users) == 1
        assert users[0].username == "alice"
        assert users[0].password_hash == original_hash

    def test_duplicate_email_is_case_insensitive(self, db_session):
        register_user("alice", "a@x.com", "Passw0rd", db_session)
        with pytest.raises(DuplicateIdentityError):
            register_user("alice2", "A@X.COM", "Passw0rd", db_session)

    def test_duplicate_username_rejected(self, db_session):
        register_user("alice", "a@x.com", "Passw0rd", db_session)
        with pytest.raises(DuplicateIdentityError):
            register_user("alice", "b@x.com", "Passw0rd", db_session)

    @pytest.mark.parametrize("password", ["short1", "allletters", "12345678", ""])
    def test_weak_passwords_rejected(self, password):
        with pytest.raises(ValidationError):
            validate_password_strength(password)

    def test_invalid_email_rejected(self, db_session):
        with pytest.raises(ValidationError):
            register_user("alice", "not-an-email", "Passw0rd", db_session)
        assert db_session.query(User).count() == 0

    def test_invalid_username_rejected(self, db_session):
        with pytest.raises(ValidationError):
            register_user("a b", "a@x.com", "Passw0rd", db_session)

    @pytest.mark.parametrize("password", [LONG_PASSWORD, "Aa1" + "\u00e9" * 35])
    def test_password_over_72_bytes_rejected(self, db_session, password):
        with pytest.raises(ValidationError):
            register_user("alice", "a@x.com", password, db_session)
        assert db_session.query(User).count() == 0

    def test_password_of_exactly_72_bytes_accepted(self, db_session):
        password = "Aa1" + "x" * 69
        user, _ = register_user("alice", "a@x.com", password, db_session)
        assert verify_password(password, user.password_hash)


@pytest.mark.critical
class TestAuthentication:
    """Test credential checks and tokens"""

    def test_correct_credentials_succeed(self, test_user, db_session):
        user = authenticate_user(test_user.email, TEST_PASSWORD, db_session)
        assert user.id == test_user.id

    def test_over_long_password_is_invalid_credentials(self, test_user, db_session):
        with pytest.raises(InvalidCredentialsError):
            authenticate_user(test_user.email, LONG_PASSWORD, db_session)
        with pytest.raises(InvalidCredentialsError):
            authenticate_user("nobody@example.com", LONG_PASSWORD, db_session)

    def test_suffix_past_72_bytes_does_not_match(self, db_session):
        password = "Aa1" + "x" * 69
        register_user("alice", "a@x.com", password, db_session)
        with pytest.raises(InvalidCredentialsError):
            authenticate_user("a@x.com", password + "extra", db_session)

    def test_wrong_password_and_unknown_identifier_look_the_same(self, test_user, db_session):
        with pytest.raises(InvalidCredentialsError) as wrong_password:
            authenticate_user(test_user.email, "WrongPassword1", db_session)
        with pytest.raises(InvalidCredentialsError) as unknown_user:
            authenticate_user("nobody@example.com", TEST_PASSWORD, db_session)

        assert type(wrong_password.value) is type(unknown_user.value)
        assert wrong_password.value.detail == unknown_user.value.detail

    def test_login_by_username_when_configured(self, test_user, db_session):
        with patch.object(settings, "LOGIN_IDENTIFIER_FIELD", "username"):
            user, token = login_user(test_user.username, TEST_PASSWORD, db_session)
            assert user.id == test_user.id
            with pytest.raises(InvalidCredentialsError):
                login_user(test_user.email, TEST_PASSWORD, db_session)

    def test_token_valid_just_before_expiry(self, test_user, db_session):
        issued_at = datetime.now(timezone.utc) - timedelta(seconds=access_token_ttl_seconds() - 5)
        token = create_access_token(test_user.id, now=issued_at)
        assert verify_token(token, db_session).id == test_user.id

    def test_token_expired_just_after_expiry(self, test_user, db_session):
        issued_at = datetime.now(timezone.utc) - timedelta(seconds=access_token_ttl_seconds() + 5)
        token = create_access_token(test_user.id, now=issued_at)
        with pytest.raises(TokenExpiredError):
            verify_token(token, db_session)

    def test_tampered_token_is_invalid(self, test_user, db_session):
        token = create_access_token(test_user.id)
        forged = jwt.encode(
            jwt.decode(token, options={"verify_signature": False}),
            "some-other-key",
            algorithm="HS256"
        )
        with pytest.raises(TokenInvalidError):
            verify_token(forged, db_session)
        with pytest.raises(TokenInvalidError):
            verify_token("not.a.token", db_session)

    def test_token_carries_no_role(self, admin_user):
        payload = decode_access_token(create_access_token(admin_user.id))
        assert payload["sub"] == str(admin_user.id)
        assert "role" not in payload

    def test_token_for_deleted_user_is_invalid(self, test_user, db_session):
        token = create_access_token(test_user.id)
        db_session.delete(test_user)
        db_session.commit()
        with pytest.raises(TokenInvalidError):
            verify_token(token, db_session)

    def test_verification_reads_current_role(self, test_user, db_session):
        token = create_access_token(test_user.id)
        test_user.role = UserRole.ADMIN
        db_session.commit()

        assert verify_token(token, db_session).role == UserRole.ADMIN

    def test_serialized_user_excludes_hash(self, test_user):
        data = serialize_user(test_user)
        assert "password_hash" not in data
        assert data["role"] == "user"


@pytest.mark.high
class TestPasswordManagement:
    """Test password reset and change"""

    def test_reset_flow(self, test_user, db_session):
        token = initiate_password_reset(test_user.email, db_session)
        assert token
        assert test_user.password_reset_token_hash != token

        complete_password_reset(token, "BrandNew123", db_session)
        assert authenticate_user(test_user.email, "BrandNew123", db_session).id == test_user.id
        assert test_user.password_reset_token_hash is None

    def test_reset_for_unknown_email_returns_none(self, db_session):
        assert initiate_password_reset("nobody@example.com", db_session) is None

    def test_reset_token_is_single_use(self, test_user, db_session):
        token = initiate_password_reset(test_user.email, db_session)
        complete_password_reset(token, "BrandNew123", db_session)
        with pytest.raises(ValidationError):
            complete_password_reset(token, "Another1234", db_session)

    def test_expired_reset_token_rejected(self, test_user, db_session):
        issued = datetime.now(timezone.utc) - timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES + 1)
        token = initiate_password_reset(test_user.email, db_session, now=issued)
        with pytest.raises(ValidationError):
            complete_password_reset(token, "BrandNew123", db_session)

    def test_change_password(self, test_user, db_session):
        change_password(test_user, TEST_PASSWORD, "Changed1234", db_session)
        assert verify_password("Changed1234", test_user.password_hash)

    def test_change_password_wrong_current(self, test_user, db_session):
        with pytest.raises(InvalidCredentialsError):
            change_password(test_user, "WrongPassword1", "Changed1234", db_session)

    def test_change_password_to_same_value_does_not_rehash(self, test_user, db_session):
        original_hash = test_user.password_hash
        with pytest.raises(ValidationError):
            change_password(test_user, TEST_PASSWORD, TEST_PASSWORD, db_session)
        assert test_user.password_hash == original_hash

    def test_over_long_passwords_in_password_changes(self, test_user, db_session):
        with pytest.raises(InvalidCredentialsError):
            change_password(test_user, LONG_PASSWORD, "Changed1234", db_session)
        with pytest.raises(ValidationError):
            change_password(test_user, TEST_PASSWORD, LONG_PASSWORD, db_session)

        token = initiate_password_reset(test_user.email, db_session)
        with pytest.raises(ValidationError):
            complete_password_reset(token, LONG_PASSWORD, db_session)
        assert authenticate_user(test_user.email, TEST_PASSWORD, db_session).id == test_user.id


@pytest.mark.critical
class TestAuthorization:
    """Test the role gate"""

    def test_require_role_passes_admin(self, admin_user):
        assert require_role(admin_user, UserRole.ADMIN) is admin_user

    def test_require_role_rejects_user(self, test_user):
        with pytest.raises(ForbiddenError):
            require_role(test_user, UserRole.ADMIN)


@pytest.mark.critical
class TestGenerateLink:
    """Test admin link generation"""

    def test_non_admin_cannot_generate_link(self, test_user, test_user_2, db_session):
        with pytest.raises(ForbiddenError):
            generate_link(test_user, "vid1", "https://shop.example.com", test_user_2.id, db_session)
        assert db_session.query(AffiliateLink).count() == 0

    def test_admin_generates_exactly_one_link(self, admin_user, test_user, db_session):
        link = generate_link(admin_user, "vid1", "https://shop.example.com/p/1", test_user.id, db_session)

        assert db_session.query(AffiliateLink).count() == 1
        assert link.owner_id == test_user.id
        assert link.clicks == 0
        db_session.expire_all()
        link_ids = [l.id for l in db_session.get(User, test_user.id).links]
        assert link_ids.count(link.id) == 1

    def test_unknown_target_user(self, admin_user, db_session):
        with pytest.raises(NotFoundError):
            generate_link(admin_user, "vid1", "https://shop.example.com", 9999, db_session)
        assert db_session.query(AffiliateLink).count() == 0

    @pytest.mark.parametrize("target_user_id", [0, -1, INTEGER_MAX + 1, 10 ** 20])
    def test_out_of_range_target_user(self, admin_user, db_session, target_user_id):
        with pytest.raises(NotFoundError):
            generate_link(admin_user, "vid1", "https://shop.example.com", target_user_id, db_session)
        assert db_session.query(AffiliateLink).count() == 0

    @pytest.mark.parametrize("video_id,destination_url", [
        ("", "https://shop.example.com"),
        ("vid1", ""),
        ("   ", "https://shop.example.com"),
        ("vid1", "javascript:alert(1)"),
        ("vid1", "shop.example.com"),
    ])
    def test_invalid_fields(self, admin_user, test_user, db_session, video_id, destination_url):
        with pytest.raises(ValidationError):
            generate_link(admin_user, video_id, destination_url, test_user.id, db_session)
        assert db_session.query(AffiliateLink).count() == 0


@pytest.mark.critical
class TestCreditEntries:
    """Test admin entry credits"""

    def test_sequential_credits_accumulate(self, admin_user, test_user, db_session):
        before = test_user.entries
        credit_entries(admin_user, test_user.id, 5, db_session)
        user = credit_entries(admin_user, test_user.id, 3, db_session)

        assert user.entries == before + 8
        db_session.expire_all()
        assert db_session.get(User, test_user.id).entries == before + 8

    def test_non_admin_cannot_credit(self, test_user, test_user_2, db_session):
        with pytest.raises(ForbiddenError):
            credit_entries(test_user, test_user_2.id, 5, db_session)
        db_session.expire_all()
        assert db_session.get(User, test_user_2.id).entries == 0

    def test_unknown_target(self, admin_user, db_session):
        with pytest.raises(NotFoundError):
            credit_entries(admin_user, 9999, 5, db_session)

    @pytest.mark.parametrize("amount", [0, -3, True])
    def test_non_positive_amount_rejected(self, admin_user, test_user, db_session, amount):
        with pytest.raises(ValidationError):
            credit_entries(admin_user, test_user.id, amount, db_session)

    @pytest.mark.parametrize("amount", [MAX_CREDIT_AMOUNT + 1, 10 ** 20])
    def test_oversized_amount_rejected(self, admin_user, test_user, db_session, amount):
        with pytest.raises(ValidationError):
            credit_entries(admin_user, test_user.id, amount, db_session)
        db_session.expire_all()
        assert db_session.get(User, test_user.id).entries == 0

    def test_out_of_range_target(self, admin_user, db_session):
        with pytest.raises(NotFoundError):
            credit_entries(admin_user, 10 ** 20, 5, db_session)

    def test_credit_cannot_overflow_entries(self, admin_user, test_user, db_session):
        test_user.entries = INTEGER_MAX - 1
        db_session.commit()

        with pytest.raises(ValidationError):
            credit_entries(admin_user, test_user.id, 5, db_session)
        db_session.expire_all()
        assert db_session.get(User, test_user.id).entries == INTEGER_MAX - 1


@pytest.mark.high
class TestRewards:
    """Test XP/level bookkeeping and click tracking"""

    def test_compute_level_thresholds(self):
        assert compute_level(0)["level"] == 1
        assert compute_level(99)["level"] == 1
        assert compute_level(100)["level"] == 2
        assert compute_level(260) == {
            "level": 3, "xp_into_level": 10, "xp_for_level": 250, "next_level_xp": 500
        }

    def test_compute_level_caps_at_max(self):
        progress = compute_level(10 ** 9)
        assert progress["next_level_xp"] is None
        assert progress["xp_for_level"] >= 1

    def test_record_click_counts_and_awards_xp(self, admin_user, test_user, db_session):
        link = generate_link(admin_user, "vid1", "https://shop.example.com/p/1", test_user.id, db_session)

        destination = record_click(link.id, db_session)

        assert destination == "https://shop.example.com/p/1"
        db_session.refresh(link)
        db_session.refresh(test_user)
        assert link.clicks == 1
        assert test_user.xp == settings.XP_PER_CLICK

    def test_clicks_raise_level(self, admin_user, test_user, db_session):
        link = generate_link(admin_user, "vid1", "https://shop.example.com", test_user.id, db_session)
        with patch.object(settings, "XP_PER_CLICK", 100):
            record_click(link.id, db_session)
        db_session.refresh(test_user)
        assert test_user.xp == 100
        assert test_user.level == 2

    def test_record_click_unknown_link(self, db_session):
        with pytest.raises(NotFoundError):
            record_click(9999, db_session)
        with pytest.raises(NotFoundError):
            record_click(10 ** 20, db_session)


@pytest.mark.high
class TestDashboardAndAdmin:
    """Test read paths"""

    def test_dashboard_for_new_user(self, test_user):
        dashboard = get_dashboard(test_user)
        assert dashboard["xp"] == 0
        assert dashboard["level"] == 1
        assert dashboard["entries"] == 0
        assert dashboard["links"] == []
        assert "password_hash" not in dashboard["user"]

    def test_dashboard_lists_own_links_newest_first(self, admin_user, test_user, test_user_2, db_session):
        first = generate_link(admin_user, "vid1", "https://a.example.com", test_user.id, db_session)
        second = generate_link(admin_user, "vid2", "https://b.example.com", test_user.id, db_session)
        generate_link(admin_user, "vid3", "https://c.example.com", test_user_2.id, db_session)

        db_session.refresh(test_user)
        dashboard = get_dashboard(test_user)
        assert [l["id"] for l in dashboard["links"]] == [second.id, first.id]
        assert dashboard["links"][0]["tracking_url"].endswith(f"/r/{second.id}")

    def test_list_users_search(self, admin_user, test_user, test_user_2, db_session):
        result = list_users(admin_user, search="second", db=db_session)
        assert result["total"] == 1
        assert result["users"][0]["id"] == test_user_2.id

    def test_list_users_requires_admin(self, test_user, db_session):
        with pytest.raises(ForbiddenError):
            list_users(test_user, db=db_session)

    def test_user_details_counts_links_and_clicks(self, admin_user, test_user, db_session):
        link = generate_link(admin_user, "vid1", "https://a.example.com", test_user.id, db_session)
        record_click(link.id, db_session)
        record_click(link.id, db_session)

        details = get_user_details(admin_user, test_user.id, db_session)
        assert details["link_count"] == 1
        assert details["total_clicks"] == 2

    def test_user_details_unknown_user(self, admin_user, db_session):
        with pytest.raises(NotFoundError):
            get_user_details(admin_user, 9999, db_session)
        with pytest.raises(NotFoundError):
            get_user_details(admin_user, 10 ** 20, db_session)
