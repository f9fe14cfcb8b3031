"""
Milestone evidence scoring.

``evaluate(evidence_ref, milestone_description, **context)`` returns
``{"score": 0..100, "notes": str}``. Scores are only recorded on the proposal;
approval is always an operator decision.
"""
import logging
from abc import ABC, abstractmethod

import requests
from django.conf import settings

from quadfund.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

RECOMMEND_APPROVE_THRESHOLD = 70


class BaseVerificationService(ABC):

    def __init__(self, **kwargs):
        self.config = kwargs

    @abstractmethod
    def evaluate(self, evidence_ref: str, milestone_description: str, **context) -> dict:
        pass


class HttpVerificationService(BaseVerificationService):
    """Remote scoring model behind a JSON endpoint."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.url = kwargs.get('url', settings.AI_VERIFICATION_URL)
        self.api_key = kwargs.get('api_key', settings.AI_VERIFICATION_API_KEY)
        self.timeout = kwargs.get('timeout', settings.PROVIDER_TIMEOUT_SECONDS)

    def evaluate(self, evidence_ref, milestone_description, **context):
        payload = {
            "evidence_ref": evidence_ref,
            "milestone_description": milestone_description,
            **{key: value for key, value in context.items() if value is not None},
        }
        headers = {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
        }
        try:
            response = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"AI verification request failed: {str(e)}")
            raise ExternalServiceError("AI verification service is unavailable.") from e
        except ValueError as e:
            logger.error(f"AI verification returned invalid JSON: {str(e)}")
            raise ExternalServiceError("AI verification service returned an invalid response.") from e

        score = data.get('score')
        if isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= 100:
            logger.error(f"AI verification returned an out-of-range score: {score!r}")
            raise ExternalServiceError("AI verification service returned an invalid score.")
        return {'score': score, 'notes': str(data.get('notes') or '')}


class HeuristicVerificationService(BaseVerificationService):
    """
    Rule-based scoring used when no model endpoint is configured.

    Five criteria are scored 0-100 and combined with fixed weights:
    evidence quality 30%, milestone alignment 20%, budget reasonability 25%,
    implementation feasibility 15%, fraud-risk indicators 10%.
    """

    WEIGHTS = {
        'Evidence Quality': 30,
        'Milestone Alignment': 20,
        'Budget Reasonability': 25,
        'Implementation Feasibility': 15,
        'Fraud Risk Assessment': 10,
    }

    def evaluate(self, evidence_ref, milestone_description, **context):
        amount = context.get('amount')
        allocated = context.get('allocated_amount')
        description = context.get('description') or ''

        scores = {
            'Evidence Quality': 95 if evidence_ref and len(evidence_ref) > 10 else 30,
            'Milestone Alignment': 90 if milestone_description else 50,
            'Budget Reasonability': self._budget_score(amount, allocated),
            'Implementation Feasibility': 85,
            'Fraud Risk Assessment': 90 if len(description) > 50 else 40,
        }

        weighted = sum(scores[name] * weight for name, weight in self.WEIGHTS.items())
        # round half up on the 0..10000 scale
        final_score = (weighted + 50) // 100

        lines = ["AI Evaluation Results:"]
        lines += [f"- {name}: {score}/100" for name, score in scores.items()]
        lines.append(f"\nFinal Score: {final_score}/100")
        if final_score >= RECOMMEND_APPROVE_THRESHOLD:
            lines.append("RECOMMENDATION: APPROVE - This proposal meets verification criteria")
        else:
            lines.append("RECOMMENDATION: REJECT - This proposal does not meet verification criteria")

        return {'score': final_score, 'notes': "\n".join(lines)}

    @staticmethod
    def _budget_score(amount, allocated):
        if amount is None or not allocated:
            return 0
        if amount * 10 <= allocated * 8:
            return 90
        if amount <= allocated:
            return 70
        return 0


def get_verification_service(**kwargs) -> BaseVerificationService:
    services = {
        'http': HttpVerificationService,
        'heuristic': HeuristicVerificationService,
    }

    name = settings.AI_VERIFICATION_BACKEND
    if name not in services:
        raise ValueError(f"Unknown AI verification backend: {name}")

    return services[name](**kwargs)
