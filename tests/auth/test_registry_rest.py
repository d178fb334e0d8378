# Licensed to the Apache Software Foundation (ASF) under one
# or more contributor license agreements.  See the NOTICE file
# distributed with this work for additional information
# regarding copyright ownership.  The ASF licenses this file
# to you under the Apache License, Version 2.0 (the
# "License"); you may not use this file except in compliance
# with the License.  You may obtain a copy of the License at
#
#   http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing,
# software distributed under the License is distributed on an
# "AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY
# KIND, either express or implied.  See the License for the
# specific language governing permissions and limitations
# under the License.
import pytest
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests_mock import Mocker

from pydeltashare import __version__
from pydeltashare.auth import Principal
from pydeltashare.auth.registry import RestRecipientValidator
from pydeltashare.exceptions import RecipientValidationError

TEST_URI = "https://recipients.example.com/"
TEST_SERVICE_TOKEN = "service-token"
VALIDATE_URL = f"{TEST_URI}v1/recipients/validate"
PRINCIPAL = {"id": "recipient-1", "name": "Acme Analytics", "roles": ["viewer"], "groups": []}


def test_url() -> None:
    assert RestRecipientValidator("https://recipients.example.com").url("recipients/validate") == VALIDATE_URL
    assert RestRecipientValidator(TEST_URI).url("recipients/validate") == VALIDATE_URL


def test_validate_200(requests_mock: Mocker) -> None:
    requests_mock.post(
        VALIDATE_URL,
        json=PRINCIPAL,
        status_code=200,
        request_headers={
            "Authorization": f"Bearer {TEST_SERVICE_TOKEN}",
            "Content-type": "application/json",
            "User-Agent": f"PyDeltaShare/{__version__}",
        },
    )
    principal = RestRecipientValidator(TEST_URI, token=TEST_SERVICE_TOKEN).validate("dss_abc")
    assert principal == Principal(**PRINCIPAL)
    assert requests_mock.last_request.json() == {"token": "dss_abc"}


def test_validate_without_service_token(requests_mock: Mocker) -> None:
    requests_mock.post(VALIDATE_URL, json=PRINCIPAL, status_code=200)
    assert RestRecipientValidator(TEST_URI).validate("dss_abc") is not None
    assert "Authorization" not in requests_mock.last_request.headers


@pytest.mark.parametrize("status_code", [401, 404])
def test_validate_unknown_recipient(requests_mock: Mocker, status_code: int) -> None:
    requests_mock.post(
        VALIDATE_URL,
        json={"success": False, "error": {"message": "Invalid or expired token"}},
        status_code=status_code,
    )
    assert RestRecipientValidator(TEST_URI).validate("dss_abc") is None


def test_validate_500(requests_mock: Mocker) -> None:
    requests_mock.post(
        VALIDATE_URL,
        json={"success": False, "error": {"message": "Database unavailable"}},
        status_code=500,
    )
    with pytest.raises(RecipientValidationError) as e:
        RestRecipientValidator(TEST_URI).validate("dss_abc")
    assert "RecipientValidationError 500: Database unavailable" in str(e.value)


def test_validate_503_not_json(requests_mock: Mocker) -> None:
    requests_mock.post(VALIDATE_URL, text="<html>Service Unavailable</html>", status_code=503)
    with pytest.raises(RecipientValidationError) as e:
        RestRecipientValidator(TEST_URI).validate("dss_abc")
    assert "Could not decode json payload" in str(e.value)


def test_validate_unexpected_error_payload(requests_mock: Mocker) -> None:
    requests_mock.post(VALIDATE_URL, json={"unexpected": True}, status_code=502)
    with pytest.raises(RecipientValidationError) as e:
        RestRecipientValidator(TEST_URI).validate("dss_abc")
    assert "Received unexpected JSON Payload" in str(e.value)


def test_validate_unexpected_principal_payload(requests_mock: Mocker) -> None:
    requests_mock.post(VALIDATE_URL, json={"name": "no id"}, status_code=200)
    with pytest.raises(RecipientValidationError, match="unexpected recipient payload"):
        RestRecipientValidator(TEST_URI).validate("dss_abc")


def test_validate_connection_error(requests_mock: Mocker) -> None:
    requests_mock.post(VALIDATE_URL, exc=RequestsConnectionError("refused"))
    with pytest.raises(RecipientValidationError, match="Could not reach the recipient service"):
        RestRecipientValidator(TEST_URI).validate("dss_abc")
