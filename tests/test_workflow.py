import io
import json

import pytest
from PIL import Image

from conftest import API_KEY, make_image_bytes, text_response
from credential_store import StorageError
from gemini_service import (
    ANALYSIS_FAILED_MESSAGE,
    GENERATION_FAILED_MESSAGE,
    AnalysisError,
    GeminiService,
    GenerationError,
)
from image_preprocessor import prepare_upload, split_data_uri
from workflow import AppStep, CredentialMissing, WorkflowController, WorkflowState

IMAGE = "data:image/jpeg;base64,aW1n"
INITIAL = (AppStep.UPLOAD, None, None, None, False, False, None)


def test_initial_state(controller):
    assert controller.snapshot().as_tuple() == INITIAL
    assert controller.has_credential
    assert controller.credential == API_KEY


def test_submit_without_credential_changes_nothing(anon_controller, service):
    with pytest.raises(CredentialMissing):
        anon_controller.submit_image(IMAGE)
    assert anon_controller.snapshot().as_tuple() == INITIAL
    assert service.analyze_calls == []


def test_successful_analysis(controller, service):
    assert controller.submit_image(IMAGE) is True

    state = controller.snapshot()
    assert state.step == AppStep.ANALYSIS
    assert state.original_image == IMAGE
    assert state.analysis_result is service.analysis
    assert state.is_analyzing is False
    assert state.error is None
    assert service.analyze_calls == [(IMAGE, API_KEY)]


def test_busy_flag_is_set_while_analyzing(controller, service):
    seen = []
    service.on_analyze = lambda: seen.append(controller.snapshot().is_analyzing)
    controller.submit_image(IMAGE)
    assert seen == [True]


@pytest.mark.parametrize("error, message", [
    (AnalysisError("API 권한이 거부되었습니다. API 키를 확인해주세요."),
     "API 권한이 거부되었습니다. API 키를 확인해주세요."),
    (RuntimeError("boom"), ANALYSIS_FAILED_MESSAGE),
])
def test_failed_analysis_stays_on_upload(controller, service, error, message):
    service.analyze_error = error

    assert controller.submit_image(IMAGE) is True

    state = controller.snapshot()
    assert state.step == AppStep.UPLOAD
    assert state.is_analyzing is False
    assert state.error == message
    assert state.analysis_result is None


def test_next_submit_clears_previous_error(controller, service):
    service.analyze_error = AnalysisError("실패")
    controller.submit_image(IMAGE)
    assert controller.snapshot().error == "실패"

    service.analyze_error = None
    controller.submit_image(IMAGE)
    assert controller.snapshot().error is None


def test_second_submit_while_analyzing_is_ignored(controller, service):
    nested = []
    service.on_analyze = lambda: nested.append(controller.submit_image("data:image/jpeg;base64,b3RoZXI="))

    controller.submit_image(IMAGE)

    assert nested == [False]
    assert len(service.analyze_calls) == 1
    assert controller.snapshot().original_image == IMAGE


def test_generation_requires_analysis(controller, service):
    assert controller.request_generation() is False
    assert service.generate_calls == []
    assert controller.snapshot().as_tuple() == INITIAL


def test_generation_requires_credential(controller, service):
    controller.submit_image(IMAGE)
    controller._credential = None

    assert controller.request_generation() is False
    assert service.generate_calls == []


def test_successful_generation(controller, service):
    controller.submit_image(IMAGE)

    assert controller.request_generation() is True

    state = controller.snapshot()
    assert state.step == AppStep.RESULT
    assert state.generated_image == service.generated
    assert state.is_generating is False
    assert state.error is None
    assert service.generate_calls == [(IMAGE, service.analysis, API_KEY)]


@pytest.mark.parametrize("error, message", [
    (GenerationError("이미지 생성 결과가 비어있습니다."), "이미지 생성 결과가 비어있습니다."),
    (ValueError("unexpected"), GENERATION_FAILED_MESSAGE),
])
def test_failed_generation_stays_on_analysis(controller, service, error, message):
    controller.submit_image(IMAGE)
    service.generate_error = error

    controller.request_generation()

    state = controller.snapshot()
    assert state.step == AppStep.ANALYSIS
    assert state.is_generating is False
    assert state.error == message
    assert state.generated_image is None


def test_double_click_generates_once(controller, service):
    controller.submit_image(IMAGE)
    nested = []
    service.on_generate = lambda: nested.append(controller.request_generation())

    controller.request_generation()

    assert nested == [False]
    assert len(service.generate_calls) == 1


@pytest.mark.parametrize("steps", [0, 1, 2])
def test_reset_from_any_state(controller, steps):
    if steps >= 1:
        controller.submit_image(IMAGE)
    if steps >= 2:
        controller.request_generation()
    controller.reset()
    assert controller.snapshot().as_tuple() == INITIAL
    assert controller.snapshot() == WorkflowState()


def test_reset_after_error(controller, service):
    service.analyze_error = AnalysisError("실패")
    controller.submit_image(IMAGE)
    controller.reset()
    assert controller.snapshot().as_tuple() == INITIAL


def test_result_arriving_after_reset_is_dropped(controller, service):
    service.on_analyze = controller.reset
    controller.submit_image(IMAGE)
    assert controller.snapshot().as_tuple() == INITIAL


def test_dismiss_error_only_clears_error(controller, service):
    controller.submit_image(IMAGE)
    service.generate_error = GenerationError("실패")
    controller.request_generation()
    before = controller.snapshot()

    controller.dismiss_error()

    after = controller.snapshot()
    assert after.error is None
    assert after.as_tuple()[:6] == before.as_tuple()[:6]


def test_saved_credential_is_usable_immediately(anon_controller, service, store):
    anon_controller.save_credential("AIzaSy-new")

    assert anon_controller.submit_image(IMAGE) is True
    assert service.analyze_calls == [(IMAGE, "AIzaSy-new")]
    assert store.load() == "AIzaSy-new"


def test_failed_save_leaves_holder_untouched(service):
    class BrokenStore:
        def load(self):
            return None

        def save(self, credential):
            raise StorageError()

    controller = WorkflowController(service, BrokenStore())
    with pytest.raises(StorageError):
        controller.save_credential("AIzaSy")
    assert not controller.has_credential


def test_clear_credential(controller, store):
    controller.clear_credential()
    assert not controller.has_credential
    assert store.load() is None


def test_test_credential_delegates(controller, service):
    service.credential_ok = False
    assert controller.test_credential("candidate") is False
    assert service.test_calls == ["candidate"]


def test_wide_photo_flows_into_analysis_intact(store, client_factory, sample_analysis):
    store.save(API_KEY)
    client_factory.queue(text_response(json.dumps(sample_analysis, ensure_ascii=False)))
    controller = WorkflowController(GeminiService(client_factory=client_factory), store)

    image_data = prepare_upload(make_image_bytes((2000, 1000)), "image/png")
    _mime, raw = split_data_uri(image_data)
    assert Image.open(io.BytesIO(raw)).size == (1000, 1000)

    controller.submit_image(image_data)

    state = controller.snapshot()
    assert state.step == AppStep.ANALYSIS
    assert state.original_image == image_data
    assert state.is_analyzing is False
    assert state.error is None
    assert state.analysis_result.to_dict() == sample_analysis
    sent = client_factory.models.calls[0]["contents"][0].inline_data.data
    assert sent == raw


def test_submit_after_analysis_is_ignored(controller, service):
    controller.submit_image(IMAGE)
    before = controller.snapshot()

    assert controller.submit_image("data:image/jpeg;base64,b3RoZXI=") is False

    assert controller.snapshot() == before
    assert len(service.analyze_calls) == 1


def test_submit_after_reset_analyzes_again(controller, service):
    controller.submit_image(IMAGE)
    controller.reset()

    assert controller.submit_image("data:image/jpeg;base64,b3RoZXI=") is True
    assert len(service.analyze_calls) == 2
    assert controller.snapshot().original_image == "data:image/jpeg;base64,b3RoZXI="
