"""Upload -> Analysis -> Result step machine and its request guards."""

import logging
import threading
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Optional

from gemini_service import (
    ANALYSIS_FAILED_MESSAGE,
    GENERATION_FAILED_MESSAGE,
    AnalysisError,
    GenerationError,
    SkinAnalysis,
)

logger = logging.getLogger(__name__)


class AppStep(IntEnum):
    UPLOAD = 0
    ANALYSIS = 1
    RESULT = 2


class CredentialMissing(Exception):
    """No API key is loaded; the caller should open the settings surface."""

    def __init__(self, message="API Key를 먼저 설정해주세요."):
        super().__init__(message)


@dataclass(frozen=True)
class WorkflowState:
    step: AppStep = AppStep.UPLOAD
    original_image: Optional[str] = None
    analysis_result: Optional[SkinAnalysis] = None
    generated_image: Optional[str] = None
    is_analyzing: bool = False
    is_generating: bool = False
    error: Optional[str] = None

    def as_tuple(self):
        return (
            self.step,
            self.original_image,
            self.analysis_result,
            self.generated_image,
            self.is_analyzing,
            self.is_generating,
            self.error,
        )

    def to_dict(self):
        return {
            "step": self.step.name,
            "originalImage": self.original_image,
            "analysisResult": self.analysis_result.to_dict() if self.analysis_result else None,
            "generatedImage": self.generated_image,
            "isAnalyzing": self.is_analyzing,
            "isGenerating": self.is_generating,
            "error": self.error,
        }


class WorkflowController:
    """Owns the one WorkflowState and the in-memory API key.

    Busy flags are checked and set under a lock; remote calls run outside it.
    Each reset starts a new epoch so a request that resolves after a reset
    cannot write into the fresh state.
    """

    def __init__(self, service, store):
        self.service = service
        self.store = store
        self._credential = store.load()
        self._state = WorkflowState()
        self._epoch = 0
        self._lock = threading.Lock()

    @property
    def credential(self):
        return self._credential

    @property
    def has_credential(self):
        return bool(self._credential)

    def snapshot(self):
        with self._lock:
            return self._state

    def save_credential(self, credential):
        self.store.save(credential)
        self._credential = credential
        logger.info("API key saved")

    def clear_credential(self):
        self.store.clear()
        self._credential = None
        logger.info("API key cleared")

    def test_credential(self, credential):
        return self.service.test_credential(credential)

    def _update(self, epoch, **changes):
        with self._lock:
            if epoch != self._epoch:
                logger.info("Discarding result of a request started before reset")
                return
            self._state = replace(self._state, **changes)

    def submit_image(self, image_data):
        """Store the image and run analysis.

        False when an analysis is already running or the workflow is past the
        upload step; reset first to analyze another photo.
        """
        credential = self._credential
        if not credential:
            raise CredentialMissing()

        with self._lock:
            if self._state.is_analyzing:
                logger.info("Analysis already in flight, ignoring new image")
                return False
            if self._state.step != AppStep.UPLOAD:
                logger.info("New image ignored outside the upload step")
                return False
            self._state = replace(
                self._state, original_image=image_data, is_analyzing=True, error=None,
            )
            epoch = self._epoch

        try:
            result = self.service.analyze(image_data, credential)
        except AnalysisError as e:
            self._update(epoch, is_analyzing=False, error=str(e) or ANALYSIS_FAILED_MESSAGE)
            return True
        except Exception:
            logger.exception("Unexpected analysis failure")
            self._update(epoch, is_analyzing=False, error=ANALYSIS_FAILED_MESSAGE)
            return True

        logger.info("Analysis complete, overall score %s", result.overall_score)
        self._update(
            epoch,
            step=AppStep.ANALYSIS,
            analysis_result=result,
            is_analyzing=False,
            error=None,
        )
        return True

    def request_generation(self):
        """Ask for the improved image. False when busy or a precondition is missing."""
        credential = self._credential
        with self._lock:
            state = self._state
            if state.is_generating:
                logger.info("Generation already in flight")
                return False
            if not (state.original_image and state.analysis_result and credential):
                return False
            self._state = replace(state, is_generating=True, error=None)
            epoch = self._epoch

        try:
            generated = self.service.generate(
                state.original_image, state.analysis_result, credential,
            )
        except GenerationError as e:
            self._update(epoch, is_generating=False, error=str(e) or GENERATION_FAILED_MESSAGE)
            return True
        except Exception:
            logger.exception("Unexpected generation failure")
            self._update(epoch, is_generating=False, error=GENERATION_FAILED_MESSAGE)
            return True

        logger.info("Improved image generated")
        self._update(
            epoch,
            step=AppStep.RESULT,
            generated_image=generated,
            is_generating=False,
            error=None,
        )
        return True

    def reset(self):
        with self._lock:
            self._epoch += 1
            self._state = WorkflowState()

    def dismiss_error(self):
        with self._lock:
            self._state = replace(self._state, error=None)
