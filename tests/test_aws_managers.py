"""Integration tests for AWS managers and the run store with mocked boto3."""

import io
import json
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError, ReadTimeoutError

from ps_ingestion.aws import (
    DynamoDBError,
    DynamoDBManager,
    LambdaFunctionError,
    LambdaInvocationError,
    LambdaManager,
    SNSManager,
    SNSPublishError,
)
from ps_ingestion.models import Format, PipelineRun, RunStatus, StageName
from ps_ingestion.services import DynamoDBRunStore


def _client_error(code: str, operation: str = "Invoke") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} raised"}}, operation)


class TestLambdaManagerIntegration:
    """Integration tests for LambdaManager."""

    @patch("boto3.client")
    def test_invoke_function_success(self, mock_boto_client):
        mock_lambda = Mock()
        mock_lambda.invoke.return_value = {
            "StatusCode": 200,
            "Payload": io.BytesIO(b'{"artifactRef": "s3://replays/ou/2024-01-01.json"}'),
        }
        mock_boto_client.return_value = mock_lambda

        manager = LambdaManager()
        result = manager.invoke_function("PsReplayExtractionLambda-dev", {"format": "OU"})

        assert result == {"artifactRef": "s3://replays/ou/2024-01-01.json"}
        kwargs = mock_lambda.invoke.call_args.kwargs
        assert kwargs["FunctionName"] == "PsReplayExtractionLambda-dev"
        assert kwargs["InvocationType"] == "RequestResponse"
        assert json.loads(kwargs["Payload"]) == {"format": "OU"}

    @patch("boto3.client")
    def test_empty_payload_is_none(self, mock_boto_client):
        mock_lambda = Mock()
        mock_lambda.invoke.return_value = {"StatusCode": 200, "Payload": io.BytesIO(b"")}
        mock_boto_client.return_value = mock_lambda

        assert LambdaManager().invoke_function("PsTeamsDdbWriterLambda-dev", {}) is None

    @patch("boto3.client")
    def test_function_error(self, mock_boto_client):
        mock_lambda = Mock()
        mock_lambda.invoke.return_value = {
            "StatusCode": 200,
            "FunctionError": "Unhandled",
            "Payload": io.BytesIO(
                b'{"errorType": "Sandbox.Timedout", "errorMessage": "Task timed out after 300.00 seconds"}'
            ),
        }
        mock_boto_client.return_value = mock_lambda

        with pytest.raises(LambdaFunctionError) as exc_info:
            LambdaManager().invoke_function("PsReplayTransformLambda-dev", {})

        assert exc_info.value.error_type == "Sandbox.Timedout"
        assert "timed out" in str(exc_info.value)

    @patch("boto3.client")
    @pytest.mark.parametrize(
        "code, retryable",
        [
            ("TooManyRequestsException", True),
            ("ServiceException", True),
            ("ResourceNotFoundException", False),
            ("AccessDeniedException", False),
        ],
    )
    def test_client_error_classification(self, mock_boto_client, code, retryable):
        mock_lambda = Mock()
        mock_lambda.invoke.side_effect = _client_error(code)
        mock_boto_client.return_value = mock_lambda

        with pytest.raises(LambdaInvocationError) as exc_info:
            LambdaManager().invoke_function("PsReplayTransformLambda-dev", {})

        assert exc_info.value.error_code == code
        assert exc_info.value.retryable is retryable

    @patch("boto3.client")
    def test_read_timeout_is_retryable(self, mock_boto_client):
        mock_lambda = Mock()
        mock_lambda.invoke.side_effect = ReadTimeoutError(endpoint_url="https://lambda.us-west-2.amazonaws.com")
        mock_boto_client.return_value = mock_lambda

        with pytest.raises(LambdaInvocationError) as exc_info:
            LambdaManager().invoke_function("PsReplayTransformLambda-dev", {})

        assert exc_info.value.retryable is True


class TestSNSManagerIntegration:
    @patch("boto3.client")
    def test_publish_success(self, mock_boto_client):
        mock_sns = Mock()
        mock_sns.publish.return_value = {"MessageId": "msg-12345"}
        mock_boto_client.return_value = mock_sns

        manager = SNSManager("arn:aws:sns:us-west-2:123456789012:PsIngestionEmailSns-dev")
        result = manager.publish("subject", "body", {"RunId": "ou-1"})

        assert result == {"message_id": "msg-12345"}
        kwargs = mock_sns.publish.call_args.kwargs
        assert kwargs["TopicArn"].endswith("PsIngestionEmailSns-dev")
        assert kwargs["MessageAttributes"] == {
            "RunId": {"DataType": "String", "StringValue": "ou-1"}
        }

    @patch("boto3.client")
    def test_publish_failure(self, mock_boto_client):
        mock_sns = Mock()
        mock_sns.publish.side_effect = _client_error("AuthorizationError", "Publish")
        mock_boto_client.return_value = mock_sns

        with pytest.raises(SNSPublishError):
            SNSManager("arn:aws:sns:us-west-2:123456789012:topic").publish("s", "b")


class TestDynamoDBRunStore:
    @pytest.fixture
    def mock_table(self):
        with patch("boto3.resource") as mock_resource:
            table = Mock()
            mock_resource.return_value.Table.return_value = table
            yield table

    def _failed_run(self) -> PipelineRun:
        run = PipelineRun(
            format=Format.VGC,
            trigger_name="vgc-daily",
            created_at=datetime(2024, 1, 1, 22, 15, tzinfo=timezone.utc),
        )
        run.stage_attempts[StageName.EXTRACT] = 1
        run.status = RunStatus.FAILED
        return run

    def test_save_adds_ttl(self, mock_table):
        store = DynamoDBRunStore(DynamoDBManager("PsIngestionRuns-dev"), retention_days=14)
        run = self._failed_run()

        store.save(run)

        item = mock_table.put_item.call_args.kwargs["Item"]
        assert item["run_id"] == run.run_id
        assert item["status"] == "FAILED"
        assert item["expires_at"] == int(run.created_at.timestamp()) + 14 * 24 * 3600

    def test_get_converts_decimals(self, mock_table):
        run = self._failed_run()
        item = run.to_record()
        item["stage_attempts"] = {k: Decimal(v) for k, v in item["stage_attempts"].items()}
        item["expires_at"] = Decimal(1700000000)
        mock_table.get_item.return_value = {"Item": item}
        store = DynamoDBRunStore(DynamoDBManager("PsIngestionRuns-dev"))

        stored = store.get(run.run_id)

        assert stored.run_id == run.run_id
        assert stored.status == RunStatus.FAILED
        assert stored.stage_attempts[StageName.EXTRACT] == 1
        mock_table.get_item.assert_called_once_with(Key={"run_id": run.run_id}, ConsistentRead=True)

    def test_get_missing_run(self, mock_table):
        mock_table.get_item.return_value = {}
        store = DynamoDBRunStore(DynamoDBManager("PsIngestionRuns-dev"))

        assert store.get("ou-missing") is None

    def test_list_recent_filters_and_sorts(self, mock_table):
        older = PipelineRun(format=Format.OU, created_at=datetime(2024, 1, 1, 22, 0, tzinfo=timezone.utc))
        newer = PipelineRun(format=Format.OU, created_at=datetime(2024, 1, 2, 22, 0, tzinfo=timezone.utc))
        mock_table.scan.return_value = {"Items": [older.to_record(), newer.to_record()]}
        store = DynamoDBRunStore(DynamoDBManager("PsIngestionRuns-dev"))

        runs = store.list_recent(Format.OU, limit=1)

        assert [r.run_id for r in runs] == [newer.run_id]
        assert "FilterExpression" in mock_table.scan.call_args.kwargs

    def test_put_failure_raises(self, mock_table):
        mock_table.put_item.side_effect = _client_error("ResourceNotFoundException", "PutItem")
        store = DynamoDBRunStore(DynamoDBManager("PsIngestionRuns-dev"))

        with pytest.raises(DynamoDBError):
            store.save(self._failed_run())
