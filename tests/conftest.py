import json

import pytest

import app as app_module


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class Spy:
    """Records every call and returns (or raises) a canned result."""

    def __init__(self, result=None, exc=None):
        self.calls = []
        self.result = result
        self.exc = exc

    def __call__(self, *a, **kw):
        self.calls.append({"args": a, "kwargs": kw})
        if self.exc is not None:
            raise self.exc
        return self.result


@pytest.fixture(autouse=True)
def fresh_state(monkeypatch):
    monkeypatch.setattr(app_module, "_last_tree", None)
    monkeypatch.setitem(app_module.app.config, "FRAUD_API_BASE_URL", "http://fraud.test")
    monkeypatch.setitem(app_module.app.config, "FRAUD_API_TIMEOUT", 5.0)


@pytest.fixture
def chain_response():
    return {
        "inputAccNumber": "ROOT",
        "inputTransactionDate": "2023-06-13",
        "data": [
            {
                "key": "A",
                "parentKey": "ROOT",
                "cardNumber": "4111111111111111",
                "channelName": "MOBILE",
                "transactionAmount": 1500000,
                "transactionTime": "2023-06-13T10:15:00",
                "inputDate": "2023-06-13",
            },
            {"key": "B", "parentKey": "A", "channelName": "ATM", "transactionAmount": 250000.5},
        ],
    }


@pytest.fixture
def client():
    app_module.app.config["TESTING"] = True
    return app_module.app.test_client()
