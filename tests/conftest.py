import copy
import io
from types import SimpleNamespace

import pytest
from PIL import Image

from app import create_app
from credential_store import CredentialStore
from gemini_service import SkinAnalysis
from workflow import WorkflowController

SAMPLE_ANALYSIS = {
    "tiltAngle": 3,
    "overallScore": 72,
    "skinConditions": [
        {"condition": "다크서클", "severity": "보통", "description": "눈 밑이 약간 어둡습니다."},
    ],
    "asymmetryScore": 80,
    "asymmetryDescription": "왼쪽 눈썹이 오른쪽보다 약간 높습니다.",
}

API_KEY = "AIzaSy-test-key"


def make_image_bytes(size=(200, 100), fmt="PNG", color=(200, 150, 120), mode="RGB"):
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


def text_response(text):
    return SimpleNamespace(text=text, candidates=[])


def image_response(data, mime_type="image/png"):
    parts = [
        SimpleNamespace(text="Here is the result.", inline_data=None),
        SimpleNamespace(text=None, inline_data=SimpleNamespace(data=data, mime_type=mime_type)),
    ]
    return SimpleNamespace(
        text=None,
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))],
    )


class FakeModels:
    def __init__(self):
        self.calls = []
        self.responses = []

    def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeClientFactory:
    """Stands in for make_client; every client shares one FakeModels."""

    def __init__(self):
        self.models = FakeModels()
        self.api_keys = []

    def __call__(self, api_key):
        self.api_keys.append(api_key)
        return SimpleNamespace(models=self.models)

    def queue(self, *responses):
        self.models.responses.extend(responses)


class FakeService:
    def __init__(self):
        self.analysis = SkinAnalysis.from_dict(copy.deepcopy(SAMPLE_ANALYSIS))
        self.generated = "data:image/png;base64,aW1hZ2U="
        self.analyze_error = None
        self.generate_error = None
        self.credential_ok = True
        self.on_analyze = None
        self.on_generate = None
        self.analyze_calls = []
        self.generate_calls = []
        self.test_calls = []

    def test_credential(self, credential):
        self.test_calls.append(credential)
        if isinstance(self.credential_ok, Exception):
            raise self.credential_ok
        return self.credential_ok

    def analyze(self, image_data, credential):
        self.analyze_calls.append((image_data, credential))
        if self.on_analyze:
            self.on_analyze()
        if self.analyze_error:
            raise self.analyze_error
        return self.analysis

    def generate(self, image_data, analysis, credential):
        self.generate_calls.append((image_data, analysis, credential))
        if self.on_generate:
            self.on_generate()
        if self.generate_error:
            raise self.generate_error
        return self.generated


@pytest.fixture
def sample_analysis():
    return copy.deepcopy(SAMPLE_ANALYSIS)


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def store(tmp_path):
    return CredentialStore(tmp_path / "storage.json")


@pytest.fixture
def service():
    return FakeService()


@pytest.fixture
def controller(service, store):
    store.save(API_KEY)
    return WorkflowController(service, store)


@pytest.fixture
def anon_controller(service, store):
    return WorkflowController(service, store)


@pytest.fixture
def client(controller):
    app = create_app(controller)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def anon_client(anon_controller):
    app = create_app(anon_controller)
    app.config["TESTING"] = True
    return app.test_client()
