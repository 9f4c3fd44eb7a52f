"""
Tests for the transaction endpoints.

Tests cover:
- The full workflow driven through the API
- Access rules for parties, outsiders and admins
- Error mapping for workflow errors
- Resending codes and raising disputes
- Transaction listing and agent suggestions
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.urls import reverse
from django.utils import timezone
from rest_framework import status

from core.models import Transaction

from .factories import INSPECTION_PHOTOS, authenticate


def step_url(name, tx):
    return reverse(name, kwargs={'pk': tx.pk})


def pickup_time():
    return (timezone.now() + timedelta(hours=3)).isoformat()


# ============================================================================
# 1. FULL WORKFLOW
# ============================================================================

@pytest.mark.django_db
class TestWorkflowEndpoints:

    def test_complete_sale_through_api(
        self, api_client, accepted_transaction, marketplace_admin, agent_user,
        client_user, vendor_user, fixed_code
    ):
        tx = accepted_transaction

        authenticate(api_client, marketplace_admin)
        response = api_client.post(
            step_url('transaction_assign_agent', tx), {'agent_id': agent_user.id}, format='json'
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.data['agent']['id'] == agent_user.id
        assert response.data['step'] == 'agent_assigned'

        authenticate(api_client, agent_user)
        response = api_client.post(
            step_url('transaction_schedule_pickup', tx), {'scheduled_at': pickup_time()}, format='json'
        )
        assert response.data['step'] == 'pickup_scheduled'

        response = api_client.post(
            step_url('transaction_verify_identity', tx),
            {'id_type': 'aadhaar', 'id_number': '123456789012', 'id_photo_ref': 'id.jpg'},
            format='json'
        )
        assert response.data['step'] == 'identity_verified'
        assert response.data['verification']['id_number_last4'] == '9012'

        response = api_client.post(
            step_url('transaction_inspect', tx),
            {
                'actual_condition': 'good',
                'battery_health': 75,
                'accessories_included': ['box'],
                'photo_refs': INSPECTION_PHOTOS,
            },
            format='json'
        )
        assert response.data['step'] == 'device_inspected'

        response = api_client.post(step_url('transaction_deductions', tx))
        assert response.data['step'] == 'deductions_calculated'
        assert Decimal(response.data['total_deductions']) == Decimal('7540.00')
        assert len(response.data['deductions']) == 2

        response = api_client.post(step_url('transaction_send_offer', tx))
        assert response.data['step'] == 'final_offer_sent'
        assert Decimal(response.data['final_offer']) == Decimal('50460.00')
        assert response.data['pending_confirmation']['purpose'] == 'offer_acceptance'
        assert 'code_hash' not in response.data['pending_confirmation']

        authenticate(api_client, client_user)
        response = api_client.post(
            step_url('transaction_accept_offer', tx), {'code': fixed_code}, format='json'
        )
        assert response.data['step'] == 'customer_accepted'

        authenticate(api_client, agent_user)
        response = api_client.post(
            step_url('transaction_hand_over', tx), {'handover_photo_ref': 'handover.jpg'}, format='json'
        )
        assert response.data['step'] == 'handed_over_to_vendor'
        assert response.data['pending_confirmation']['purpose'] == 'vendor_receipt'

        authenticate(api_client, vendor_user)
        response = api_client.post(
            step_url('transaction_confirm_receipt', tx), {'code': fixed_code}, format='json'
        )
        assert response.data['step'] == 'vendor_confirmed'

        authenticate(api_client, client_user)
        response = api_client.post(
            step_url('transaction_confirm_completion', tx),
            {'code': fixed_code, 'payment_method': 'upi'},
            format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['step'] == 'paid'
        assert response.data['status'] == 'completed'
        assert response.data['pending_confirmation'] is None
        settlement = response.data['settlement']
        assert Decimal(settlement['client_payout']) == Decimal('50460.00')
        assert Decimal(settlement['agent_commission']) == Decimal('2523.00')
        assert Decimal(settlement['platform_fee']) == Decimal('1009.20')
        assert Decimal(settlement['total_payable']) == Decimal('53992.20')

    def test_decline_offer(self, api_client, offer_sent_transaction, client_user):
        authenticate(api_client, client_user)

        response = api_client.post(
            step_url('transaction_decline_offer', offer_sent_transaction),
            {'reason': 'Deductions too high'},
            format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'cancelled'
        assert response.data['listing']['status'] == 'cancelled'


# ============================================================================
# 2. ACCESS RULES
# ============================================================================

@pytest.mark.django_db
class TestTransactionAccess:

    def test_parties_see_transaction(self, api_client, assigned_transaction, client_user, vendor_user, agent_user):
        for user in (client_user, vendor_user, agent_user):
            authenticate(api_client, user)

            response = api_client.get(step_url('transaction_detail', assigned_transaction))

            assert response.status_code == status.HTTP_200_OK
            assert response.data['id'] == assigned_transaction.id

    def test_outsider_is_forbidden(self, api_client, assigned_transaction, other_client):
        authenticate(api_client, other_client)

        response = api_client.get(step_url('transaction_detail', assigned_transaction))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_admin_sees_any_transaction(self, api_client, assigned_transaction, marketplace_admin):
        authenticate(api_client, marketplace_admin)

        response = api_client.get(step_url('transaction_detail', assigned_transaction))

        assert response.status_code == status.HTTP_200_OK

    def test_missing_transaction(self, api_client, client_user):
        authenticate(api_client, client_user)

        response = api_client.get(reverse('transaction_detail', kwargs={'pk': 99999}))

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_wrong_role_for_step(self, api_client, assigned_transaction, vendor_user):
        authenticate(api_client, vendor_user)

        response = api_client.post(
            step_url('transaction_schedule_pickup', assigned_transaction),
            {'scheduled_at': pickup_time()},
            format='json'
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_unassigned_agent_is_forbidden(self, api_client, assigned_transaction, other_agent):
        authenticate(api_client, other_agent)

        response = api_client.post(
            step_url('transaction_schedule_pickup', assigned_transaction),
            {'scheduled_at': pickup_time()},
            format='json'
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assigned_transaction.refresh_from_db()
        assert assigned_transaction.step == 'agent_assigned'

    def test_only_admin_assigns_agent(self, api_client, accepted_transaction, client_user, agent_user):
        authenticate(api_client, client_user)

        response = api_client.post(
            step_url('transaction_assign_agent', accepted_transaction),
            {'agent_id': agent_user.id},
            format='json'
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN


# ============================================================================
# 3. ERROR MAPPING
# ============================================================================

@pytest.mark.django_db
class TestStepErrors:

    def test_out_of_order_step_conflicts(self, api_client, assigned_transaction, agent_user):
        authenticate(api_client, agent_user)

        response = api_client.post(
            step_url('transaction_verify_identity', assigned_transaction),
            {'id_type': 'pan', 'id_number': 'ABCDE1234F', 'id_photo_ref': 'id.jpg'},
            format='json'
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['code'] == 'invalid_transition'

    def test_missing_evidence_is_bad_request(self, api_client, assigned_transaction, agent_user):
        authenticate(api_client, agent_user)
        past = (timezone.now() - timedelta(hours=1)).isoformat()

        response = api_client.post(
            step_url('transaction_schedule_pickup', assigned_transaction),
            {'scheduled_at': past},
            format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'missing_artifact'

    def test_invalid_payload(self, api_client, assigned_transaction, agent_user):
        authenticate(api_client, agent_user)

        response = api_client.post(
            step_url('transaction_schedule_pickup', assigned_transaction), {}, format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'scheduled_at' in response.data

    def test_wrong_code(self, api_client, offer_sent_transaction, client_user):
        authenticate(api_client, client_user)

        response = api_client.post(
            step_url('transaction_accept_offer', offer_sent_transaction),
            {'code': '000000'},
            format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'code_invalid'
        offer_sent_transaction.refresh_from_db()
        assert offer_sent_transaction.step == 'final_offer_sent'

    def test_assigning_non_agent(self, api_client, accepted_transaction, marketplace_admin, vendor_user):
        authenticate(api_client, marketplace_admin)

        response = api_client.post(
            step_url('transaction_assign_agent', accepted_transaction),
            {'agent_id': vendor_user.id},
            format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'agent_id' in response.data


# ============================================================================
# 4. RESEND CODES AND DISPUTES
# ============================================================================

@pytest.mark.django_db
class TestResendAndDispute:

    def test_resend_within_cooldown(self, api_client, offer_sent_transaction, client_user):
        authenticate(api_client, client_user)

        response = api_client.post(
            step_url('transaction_resend_code', offer_sent_transaction), {}, format='json'
        )

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.data['code'] == 'resend_cooldown'
        assert response.data['retry_after'] > 0

    def test_resend_when_nothing_pending(self, api_client, assigned_transaction, client_user):
        authenticate(api_client, client_user)

        response = api_client.post(
            step_url('transaction_resend_code', assigned_transaction), {}, format='json'
        )

        assert response.status_code == status.HTTP_409_CONFLICT

    def test_party_raises_dispute(self, api_client, assigned_transaction, client_user):
        authenticate(api_client, client_user)

        response = api_client.post(
            step_url('transaction_dispute', assigned_transaction),
            {'reason': 'Agent did not arrive'},
            format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'disputed'
        assert response.data['dispute_reason'] == 'Agent did not arrive'

    def test_dispute_requires_reason(self, api_client, assigned_transaction, client_user):
        authenticate(api_client, client_user)

        response = api_client.post(
            step_url('transaction_dispute', assigned_transaction), {'reason': '   '}, format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST


# ============================================================================
# 5. LISTING TRANSACTIONS AND AGENTS
# ============================================================================

@pytest.mark.django_db
class TestTransactionList:

    def test_party_lists_own_transactions(self, api_client, assigned_transaction, vendor_user):
        authenticate(api_client, vendor_user)

        response = api_client.get(reverse('transaction_list'))

        assert response.status_code == status.HTTP_200_OK
        assert [item['id'] for item in response.data['results']] == [assigned_transaction.id]

    def test_outsider_lists_nothing(self, api_client, assigned_transaction, other_client):
        authenticate(api_client, other_client)

        response = api_client.get(reverse('transaction_list'))

        assert response.data['count'] == 0

    def test_status_filter(self, api_client, assigned_transaction, marketplace_admin):
        authenticate(api_client, marketplace_admin)

        response = api_client.get(reverse('transaction_list'), {'status': 'in_progress'})
        assert response.data['count'] == 1

        response = api_client.get(reverse('transaction_list'), {'status': 'completed'})
        assert response.data['count'] == 0

    def test_agent_suggestions(self, api_client, accepted_transaction, marketplace_admin, agent_user, other_agent):
        authenticate(api_client, marketplace_admin)

        response = api_client.get(step_url('transaction_agents', accepted_transaction))

        assert response.status_code == status.HTTP_200_OK
        assert [agent['id'] for agent in response.data] == [agent_user.id, other_agent.id]
        assert response.data[0]['same_city'] is True
        assert response.data[1]['same_city'] is False
        assert response.data[0]['open_pickups'] == 0

    def test_agent_suggestions_admin_only(self, api_client, accepted_transaction, client_user):
        authenticate(api_client, client_user)

        response = api_client.get(step_url('transaction_agents', accepted_transaction))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_transaction_created_without_agent(self, accepted_transaction):
        tx = Transaction.objects.get(pk=accepted_transaction.pk)

        assert tx.step == 'awaiting_agent'
        assert tx.agent is None
