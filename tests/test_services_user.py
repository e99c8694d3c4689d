import pytest
from sqlmodel import Session

from afe_approval.core.exceptions import AuthorizationError, StateError, ValidationError
from afe_approval.models.user import User, UserRole
from afe_approval.schemas.user import UserCreate, UserUpdate
from afe_approval.services.audit import AuditService
from afe_approval.services.context import RequestContext
from afe_approval.services.user import UserService

from tests.conftest import make_signature_png, make_user


def _ctx(user: User) -> RequestContext:
    return RequestContext(user=user, ip_address="127.0.0.1", user_agent="pytest")


def test_create_user_normalizes_email(db_session: Session) -> None:
    admin = make_user(db_session, role=UserRole.ADMIN)
    service = UserService(db_session)

    user = service.create_user(
        _ctx(admin),
        UserCreate(email="Jane.Doe@Example.com", full_name="  Jane Doe ", title="CFO"),
    )

    assert user.email == "jane.doe@example.com"
    assert user.full_name == "Jane Doe"
    assert user.role == UserRole.SIGNER
    assert service.get_by_email("JANE.DOE@example.com").id == user.id
    events, total = AuditService(db_session).list_events(entity_id=user.id)
    assert total == 1
    assert events[0].action == "USER_CREATED"
    assert events[0].actor_id == admin.id


def test_duplicate_email_is_rejected(db_session: Session) -> None:
    admin = make_user(db_session, role=UserRole.ADMIN, email="admin@example.com")

    with pytest.raises(ValidationError):
        UserService(db_session).create_user(
            _ctx(admin), UserCreate(email="ADMIN@example.com", full_name="Copy")
        )


def test_only_admins_manage_users(db_session: Session) -> None:
    signer = make_user(db_session)
    service = UserService(db_session)

    with pytest.raises(AuthorizationError):
        service.create_user(_ctx(signer), UserCreate(email="x@example.com", full_name="X"))
    with pytest.raises(AuthorizationError):
        service.update_user(_ctx(signer), signer.id, UserUpdate(role=UserRole.ADMIN))


def test_last_admin_cannot_be_demoted(db_session: Session) -> None:
    admin = make_user(db_session, role=UserRole.ADMIN)
    service = UserService(db_session)

    with pytest.raises(StateError):
        service.update_user(_ctx(admin), admin.id, UserUpdate(role=UserRole.SIGNER))

    second = make_user(db_session, role=UserRole.ADMIN)
    updated = service.update_user(_ctx(second), admin.id, UserUpdate(role=UserRole.VIEWER))
    assert updated.role == UserRole.VIEWER


def test_update_title_only(db_session: Session) -> None:
    admin = make_user(db_session, role=UserRole.ADMIN)
    signer = make_user(db_session, title="Engineer")

    updated = UserService(db_session).update_user(_ctx(admin), signer.id, UserUpdate(title=" Senior Engineer "))

    assert updated.title == "Senior Engineer"
    assert updated.role == UserRole.SIGNER


def test_list_users_filters(db_session: Session) -> None:
    make_user(db_session, role=UserRole.ADMIN, full_name="Alice Admin")
    make_user(db_session, full_name="Bob Signer")
    make_user(db_session, role=UserRole.VIEWER, full_name="Vera Viewer")
    service = UserService(db_session)

    assert [user.full_name for user in service.list_users(signers_only=True)] == ["Alice Admin", "Bob Signer"]
    assert [user.full_name for user in service.list_users(role=UserRole.VIEWER)] == ["Vera Viewer"]
    assert [user.full_name for user in service.list_users(search="bob")] == ["Bob Signer"]


def test_provision_from_token_claims(db_session: Session) -> None:
    service = UserService(db_session)

    created = service.get_or_provision(external_id="idp|123", email="New.User@example.com", full_name="New User")
    again = service.get_or_provision(external_id="idp|123", email="other@example.com")

    assert created.email == "new.user@example.com"
    assert created.role == UserRole.SIGNER
    assert again.id == created.id


def test_provision_links_existing_user_by_email(db_session: Session) -> None:
    existing = make_user(db_session, email="known@example.com")
    existing.external_id = None
    db_session.add(existing)
    db_session.commit()

    linked = UserService(db_session).get_or_provision(external_id="idp|abc", email="known@example.com", role="admin")

    assert linked.id == existing.id
    assert linked.external_id == "idp|abc"
    assert linked.role == UserRole.SIGNER


def test_provision_unknown_role_defaults_to_signer(db_session: Session) -> None:
    user = UserService(db_session).get_or_provision(external_id="idp|x", email="x@example.com", role="superuser")

    assert user.role == UserRole.SIGNER


def test_saved_signature_lifecycle(db_session: Session) -> None:
    signer = make_user(db_session)
    service = UserService(db_session)
    image = make_signature_png()

    saved = service.save_signature(_ctx(signer), image)
    assert saved.signature_image == image
    assert service.get_signature(_ctx(saved)) == image

    removed = service.delete_signature(_ctx(signer))
    assert removed.signature_image is None

    actions = [entry.action for entry in AuditService(db_session).list_for_entity(signer.id)]
    assert sorted(actions) == ["SIGNATURE_REMOVED", "SIGNATURE_UPDATED"]


@pytest.mark.parametrize(
    "value",
    [
        "iVBORw0KGgo=",
        "data:image/jpeg;base64,/9j/4AAQ",
        "data:image/png;base64,aGVsbG8=",
    ],
)
def test_saved_signature_must_be_png_data_url(db_session: Session, value: str) -> None:
    signer = make_user(db_session)

    with pytest.raises(ValidationError):
        UserService(db_session).save_signature(_ctx(signer), value)
