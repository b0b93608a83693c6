"""
Integration tests for storefront members and profile updates.
"""

import pytest

from app.exceptions import ValidationError, NotFoundError, ConflictError, ForbiddenError
from app.models import UserTenant
from app.services.user_service import (
    list_members, get_member, update_member, update_profile, is_valid_email
)


class TestMembers:

    def test_list_with_roles(self, session, tenant1, owner1, customer1, customer2):
        members = list_members(session, tenant1.id)

        assert [m['id'] for m in members] == [customer1.id, owner1.id]
        assert {m['id']: m['role'] for m in members} == {owner1.id: 'OWNER', customer1.id: 'CUSTOMER'}
        assert 'password_hash' not in members[0]

    def test_role_filter(self, session, tenant1, owner1, customer1):
        assert [m['id'] for m in list_members(session, tenant1.id, role='owner')] == [owner1.id]
        with pytest.raises(ValidationError):
            list_members(session, tenant1.id, role='superuser')

    def test_member_of_other_store_not_found(self, session, tenant1, customer2):
        with pytest.raises(NotFoundError):
            get_member(session, tenant1.id, customer2.id)

    def test_promote_and_disable(self, session, tenant1, owner1, customer1):
        member = update_member(session, tenant1.id, customer1.id, {'role': 'admin'}, owner1.id)
        assert member['role'] == 'ADMIN'

        member = update_member(session, tenant1.id, customer1.id, {'active': False}, owner1.id)
        assert member['active'] is False
        assert session.query(UserTenant).filter_by(user_id=customer1.id, tenant_id=tenant1.id).one().active is False

    @pytest.mark.parametrize('data', [{}, {'role': 'OWNER'}, {'role': 'kasir'}, {'active': 'yes'}])
    def test_update_validation(self, session, tenant1, owner1, customer1, data):
        with pytest.raises(ValidationError):
            update_member(session, tenant1.id, customer1.id, data, owner1.id)
        assert get_member(session, tenant1.id, customer1.id)['role'] == 'CUSTOMER'

    def test_owner_and_self_are_protected(self, session, tenant1, owner1, customer1):
        with pytest.raises(ForbiddenError):
            update_member(session, tenant1.id, owner1.id, {'role': 'CUSTOMER'}, owner1.id)
        with pytest.raises(ForbiddenError):
            update_member(session, tenant1.id, owner1.id, {'active': False}, customer1.id)


class TestProfile:

    def test_aliases(self, session, customer1):
        update_profile(session, customer1, {'name': ' Budi ', 'no_hp': '0812 3456'})
        assert customer1.full_name == 'Budi'
        assert customer1.phone == '0812 3456'

        update_profile(session, customer1, {'phone': ''})
        assert customer1.phone is None

    def test_password_change_needs_current(self, session, customer1):
        with pytest.raises(ValidationError):
            update_profile(session, customer1, {'password': 'baru12345'})
        with pytest.raises(ValidationError):
            update_profile(session, customer1, {'password': 'baru12345', 'current_password': 'salah'})
        assert customer1.check_password('password123')

        update_profile(session, customer1, {'password': 'baru12345', 'current_password': 'password123'})
        assert customer1.check_password('baru12345')

    def test_short_password(self, session, customer1):
        with pytest.raises(ValidationError):
            update_profile(session, customer1, {'password': '123', 'current_password': 'password123'})

    def test_failed_update_changes_nothing(self, session, customer1):
        with pytest.raises(ValidationError):
            update_profile(session, customer1, {'full_name': 'Baru', 'email': 'bukan-email'})
        session.refresh(customer1)
        assert customer1.full_name == 'Customer1'

    def test_email_must_be_unique(self, session, customer1, customer1b):
        with pytest.raises(ConflictError):
            update_profile(session, customer1, {'email': customer1b.email.upper()})
        update_profile(session, customer1, {'email': 'Budi.Baru@Test.com'})
        assert customer1.email == 'budi.baru@test.com'

    def test_nothing_to_update(self, session, customer1):
        with pytest.raises(ValidationError):
            update_profile(session, customer1, {'current_password': 'password123'})

    def test_email_format(self):
        assert is_valid_email('a.b@toko.id')
        assert not is_valid_email('a@b')
