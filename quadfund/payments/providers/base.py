from abc import ABC, abstractmethod


class BaseFundCustodian(ABC):
    """
    Abstract base class for custodial wallet services.
    Holds the matching-pool and project wallets; moves funds synchronously.
    """

    def __init__(self, **kwargs):
        """Initialize the custodian with configuration."""
        self.config = kwargs

    @abstractmethod
    def transfer(self, from_wallet: str, to_address: str, amount: int, reference: str | None = None) -> str:
        """
        Move funds out of a custody wallet.

        Args:
            from_wallet: Custody wallet to debit
            to_address: Destination wallet address
            amount: Amount in minor units
            reference: Idempotency reference; a repeated reference must not
                move funds twice

        Returns:
            str: Transaction reference from the custodian

        Raises:
            ExternalServiceError: if the custodian is unreachable or refuses
        """
        pass

    @abstractmethod
    def get_balance(self, wallet: str) -> int:
        """
        Get the spendable balance of a custody wallet.

        Returns:
            int: Balance in minor units
        """
        pass


class BaseBankProvider(ABC):
    """
    Abstract base class for bank payout providers.
    Transfers are asynchronous: ``initiate_transfer`` only dispatches, and
    the outcome arrives later through a signed webhook.
    """

    name = ''

    def __init__(self, **kwargs):
        self.config = kwargs

    @abstractmethod
    def initiate_transfer(self, bank_account, amount: int, currency: str, reference: str) -> str:
        """
        Dispatch a payout to a bank account.

        Args:
            bank_account: ``payments.BankAccount`` to credit
            amount: Amount in minor units
            currency: ISO currency code
            reference: Our reference shown on the payout

        Returns:
            str: Provider reference identifying the transfer in webhooks
        """
        pass

    @abstractmethod
    def validate_webhook(self, payload: bytes, signature: str) -> bool:
        """
        Validate webhook signature.

        Args:
            payload: Raw webhook body
            signature: Webhook signature header

        Returns:
            bool: True if the payload was signed by the provider
        """
        pass
