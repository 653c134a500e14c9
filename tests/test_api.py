"""
Integration tests for the mention indexing HTTP API.
"""

import pytest
import tempfile
import threading
import os

import requests


@pytest.fixture
def temp_db():
    from longrunner.storage.database import Database

    with tempfile.NamedTemporaryFile(mode='w', delete=False, suffix='.db') as f:
        db_path = f.name

    db = Database(database_path=db_path)
    yield db

    db.engine.dispose()
    os.unlink(db_path)


@pytest.fixture
def seeded_db(temp_db):
    user = temp_db.add_user('user testIndexing')
    body = 'test @"user testIndexing"'
    first = temp_db.add_discussion(body)
    temp_db.add_discussion(body)
    temp_db.add_comment(first['discussion_id'], body)
    temp_db.add_comment(first['discussion_id'], body)
    temp_db.seeded_user_id = user['user_id']
    return temp_db


def _serve(db, **kwargs):
    from api.server import create_server

    server = create_server(db, host='127.0.0.1', port=0, **kwargs)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address[:2]
    return server, f"http://{host}:{port}"


@pytest.fixture
def api(seeded_db):
    """Server with a budget of one record per request."""
    server, base_url = _serve(seeded_db, max_iterations=1)
    yield base_url
    server.shutdown()
    server.server_close()


@pytest.fixture
def big_budget_api(seeded_db):
    server, base_url = _serve(seeded_db, max_iterations=100)
    yield base_url
    server.shutdown()
    server.server_close()


class TestIndexerEndpoints:
    """Test suite for start/resume endpoints."""

    def test_complete_run_returns_201(self, big_budget_api):
        response = requests.post(
            f"{big_budget_api}/api/v2/user-mentions/indexer-start",
            json={'recordType': 'all'}
        )

        assert response.status_code == 201
        body = response.json()
        assert body['status'] == 'complete'
        assert body['callbackPayload'] is None
        assert body['summary'] == {'processed': 4, 'failed': 0, 'skipped': 0}
        assert len(body['progress']['successIDs']) == 4

    def test_incomplete_run_returns_408_with_payload(self, api):
        response = requests.post(
            f"{api}/api/v2/user-mentions/indexer-start",
            json={'recordType': 'all'}
        )

        assert response.status_code == 408
        body = response.json()
        assert body['status'] == 'incomplete'
        assert isinstance(body['callbackPayload'], str)
        assert body['progress']['successIDs'] == [['discussion', 1]]

    def test_resume_until_complete(self, api, seeded_db):
        response = requests.post(f"{api}/api/v2/user-mentions/indexer-start", json={})
        statuses = [response.status_code]

        while response.status_code == 408:
            response = requests.post(
                f"{api}/api/v2/long-runner/run",
                json={'callbackPayload': response.json()['callbackPayload']}
            )
            statuses.append(response.status_code)

        assert statuses == [408, 408, 408, 200]
        assert response.json()['summary']['processed'] == 4

        mentions = requests.get(f"{api}/api/v2/user-mentions/users/{seeded_db.seeded_user_id}").json()
        assert len(mentions) == 4
        assert {m['recordType'] for m in mentions} == {'discussion', 'comment'}

    def test_unknown_record_type_returns_400(self, api):
        response = requests.post(
            f"{api}/api/v2/user-mentions/indexer-start",
            json={'recordType': 'poll'}
        )
        assert response.status_code == 400
        assert 'poll' in response.json()['message']

    def test_corrupt_payload_returns_400(self, api):
        response = requests.post(
            f"{api}/api/v2/long-runner/run",
            json={'callbackPayload': 'not-a-checkpoint'}
        )
        assert response.status_code == 400

    def test_wrongly_typed_resume_key_returns_400(self, api):
        from longrunner.batch.checkpoint import Checkpoint, encode_checkpoint

        token = encode_checkpoint(Checkpoint(
            job_type='index_mentions', record_filter='all', position=('discussion', 'abc')
        ))
        response = requests.post(f"{api}/api/v2/long-runner/run", json={'callbackPayload': token})

        assert response.status_code == 400
        assert response.json()['message'].startswith('Checkpoint does not match')

    def test_missing_payload_returns_400(self, api):
        response = requests.post(f"{api}/api/v2/long-runner/run", json={})
        assert response.status_code == 400

    def test_invalid_json_returns_400(self, api):
        response = requests.post(
            f"{api}/api/v2/user-mentions/indexer-start",
            data='{not json',
            headers={'Content-Type': 'application/json'}
        )
        assert response.status_code == 400

    def test_unknown_path_returns_404(self, api):
        assert requests.post(f"{api}/api/v2/other", json={}).status_code == 404
        assert requests.get(f"{api}/api/v2/user-mentions/users/abc").status_code == 404


class TestLongRunnerClient:
    """Test suite for the requests-based client."""

    def test_run_to_completion(self, api, seeded_db):
        from api.client import LongRunnerClient

        client = LongRunnerClient(api)
        final = client.run_to_completion('all')

        assert final['status'] == 'complete'
        assert final['statusCode'] == 200
        assert final['summary']['processed'] == 4
        assert len(client.get_user_mentions(seeded_db.seeded_user_id)) == 4

    def test_max_requests_exceeded(self, api):
        from api.client import LongRunnerClient, LongRunnerAPIError

        with pytest.raises(LongRunnerAPIError) as exc_info:
            LongRunnerClient(api).run_to_completion('all', max_requests=2)
        assert exc_info.value.status_code == 408

    def test_rejected_request_raises(self, api):
        from api.client import LongRunnerClient, LongRunnerAPIError

        with pytest.raises(LongRunnerAPIError) as exc_info:
            LongRunnerClient(api).start_indexer('poll')
        assert exc_info.value.status_code == 400

    def test_api_error_is_not_a_runner_error(self):
        from api.client import LongRunnerAPIError
        from longrunner.batch import LongRunnerError

        assert not issubclass(LongRunnerAPIError, LongRunnerError)

    def test_start_indexer_reports_status_code(self, big_budget_api):
        from api.client import LongRunnerClient

        response = LongRunnerClient(big_budget_api).start_indexer('comment')
        assert response['statusCode'] == 201
        assert response['summary']['processed'] == 2
