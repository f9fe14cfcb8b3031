import base64
import hashlib
import hmac
import logging
import uuid
from decimal import Decimal

import requests
from django.conf import settings

from quadfund.exceptions import ExternalServiceError
from .base import BaseBankProvider

logger = logging.getLogger(__name__)


class WiseProvider(BaseBankProvider):
    """
    Bank payouts through Wise.

    A payout is a quote, a recipient account, a transfer and a funding call.
    The Wise transfer id is the provider reference; it comes back as
    ``resource.id`` in the transfer state-change webhooks.
    """

    name = 'wise'

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.base_url = kwargs.get('base_url', settings.WISE_API_URL).rstrip('/')
        self.api_token = kwargs.get('api_token', settings.WISE_API_TOKEN)
        self.profile_id = kwargs.get('profile_id', settings.WISE_PROFILE_ID)
        self.webhook_secret = kwargs.get('webhook_secret', settings.BANK_WEBHOOK_SECRET)
        self.timeout = kwargs.get('timeout', settings.PROVIDER_TIMEOUT_SECONDS)

    def _post(self, path, payload):
        headers = {
            'Authorization': f'Bearer {self.api_token}',
            'Content-Type': 'application/json',
        }
        response = requests.post(f"{self.base_url}{path}", json=payload, headers=headers, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def initiate_transfer(self, bank_account, amount, currency, reference):
        # Wise works in major units; amounts are stored in cents.
        major_amount = str(Decimal(amount) / 100)
        try:
            quote = self._post(f"/v3/profiles/{self.profile_id}/quotes", {
                "sourceCurrency": currency,
                "targetCurrency": bank_account.currency or currency,
                "targetAmount": major_amount,
                "payOut": "BANK_TRANSFER",
            })

            recipient = self._post("/v1/accounts", {
                "profile": self.profile_id,
                "accountHolderName": bank_account.account_name,
                "currency": bank_account.currency or currency,
                "type": "swift_code" if bank_account.swift_code else "aba",
                "details": {
                    "legalType": "BUSINESS",
                    "accountNumber": bank_account.account_number,
                    "abartn": bank_account.routing_number,
                    "swiftCode": bank_account.swift_code,
                    "accountType": "CHECKING",
                    "address": {"country": bank_account.bank_country},
                },
            })

            logger.info(f"Initiating Wise transfer of {major_amount} {currency} to {bank_account.account_name} (ref={reference})")
            transfer = self._post("/v1/transfers", {
                "targetAccount": recipient['id'],
                "quoteUuid": quote['id'],
                "customerTransactionId": str(uuid.uuid5(uuid.NAMESPACE_URL, reference)),
                "details": {"reference": reference[:35]},
            })

            self._post(f"/v3/profiles/{self.profile_id}/transfers/{transfer['id']}/payments", {"type": "BALANCE"})
        except requests.exceptions.RequestException as e:
            logger.error(f"Wise transfer API request failed: {str(e)}")
            raise ExternalServiceError("Bank transfer could not be initiated.") from e
        except (KeyError, ValueError) as e:
            logger.error(f"Unexpected Wise response while initiating transfer: {str(e)}")
            raise ExternalServiceError("Bank provider returned an invalid response.") from e

        provider_reference = str(transfer['id'])
        logger.info(f"Wise transfer initiated successfully. Reference: {provider_reference}")
        return provider_reference

    def validate_webhook(self, payload, signature):
        """HMAC-SHA256 of the raw body, base64 encoded, compared in constant time."""
        if not signature or not self.webhook_secret:
            return False
        expected = base64.b64encode(
            hmac.new(self.webhook_secret.encode(), payload, hashlib.sha256).digest()
        ).decode()
        return hmac.compare_digest(expected, signature)
