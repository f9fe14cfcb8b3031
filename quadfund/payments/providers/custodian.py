import logging

import requests
from django.conf import settings

from quadfund.exceptions import ExternalServiceError
from .base import BaseFundCustodian

logger = logging.getLogger(__name__)


class HttpFundCustodian(BaseFundCustodian):
    """Custody wallet service reached over its REST API with a bearer key."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.base_url = kwargs.get('base_url', settings.CUSTODIAN_API_URL).rstrip('/')
        self.api_key = kwargs.get('api_key', settings.CUSTODIAN_API_KEY)
        self.timeout = kwargs.get('timeout', settings.PROVIDER_TIMEOUT_SECONDS)

    def _headers(self):
        return {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
        }

    def transfer(self, from_wallet, to_address, amount, reference=None):
        url = f"{self.base_url}/transfers"
        payload = {
            "from_wallet": from_wallet,
            "to_address": to_address,
            "amount": str(amount),
        }
        headers = self._headers()
        if reference:
            payload["reference"] = reference
            headers['Idempotency-Key'] = reference

        logger.info(f"Custodian transfer of {amount} from {from_wallet} to {to_address} (ref={reference})")
        try:
            response = requests.post(url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Custodian transfer request failed: {str(e)}")
            raise ExternalServiceError("Fund custodian transfer failed.") from e
        except ValueError as e:
            logger.error(f"Custodian returned a malformed transfer response: {str(e)}")
            raise ExternalServiceError("Fund custodian returned an invalid response.") from e

        tx_ref = data.get('tx_hash') or data.get('transaction_id') or data.get('reference')
        if not tx_ref:
            logger.error(f"Custodian transfer response carries no transaction reference: {data}")
            raise ExternalServiceError("Fund custodian returned no transaction reference.")

        logger.info(f"Custodian transfer accepted. TX: {tx_ref}")
        return tx_ref

    def get_balance(self, wallet):
        url = f"{self.base_url}/wallets/{wallet}/balance"
        try:
            response = requests.get(url, headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()
            return int(response.json()['balance'])
        except requests.exceptions.RequestException as e:
            logger.error(f"Custodian balance request failed for {wallet}: {str(e)}")
            raise ExternalServiceError("Fund custodian balance lookup failed.") from e
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Custodian returned a malformed balance for {wallet}: {str(e)}")
            raise ExternalServiceError("Fund custodian returned an invalid balance.") from e
