"""Test lifecycle controller: submission, asynchronous execution and reconciliation."""

import asyncio
import logging
import traceback
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agent_orchestrator.agent.client import AgentClient
from agent_orchestrator.agent.models import (
    AgentTestRequest,
    AgentTestResult,
    FileTransferRequest,
    LaunchAcknowledgement,
)
from agent_orchestrator.broadcast import Broadcaster, Topic
from agent_orchestrator.errors import (
    ConflictError,
    EmptyResultError,
    InvalidOperationError,
    NotFoundError,
    ProgramNotFoundError,
    RelayConnectionError,
    ValidationError,
)
from agent_orchestrator.models.base import utc_now
from agent_orchestrator.models.program import (
    FileTransferProgram,
    OperationProgram,
    Program,
)
from agent_orchestrator.models.result import TestResult
from agent_orchestrator.models.submission import (
    FileTransferSubmission,
    OperationSubmission,
    Submission,
)
from agent_orchestrator.models.test import (
    FileTransferParameters,
    OperationParameters,
    TestParameters,
    TestRecord,
)
from agent_orchestrator.models.views import (
    SubmissionReceipt,
    TestOutcome,
    TestStatusView,
)
from agent_orchestrator.relay.relay import SessionRelay
from agent_orchestrator.relay.transcript import transcript_path
from agent_orchestrator.status import (
    TestStatus,
    check_transition,
    progress_percentage,
    status_message,
)
from agent_orchestrator.store.base import RecordStore
from agent_orchestrator.uploads import FileStorage

log = logging.getLogger(__name__)


def now_millis() -> int:
    """Return the current time in epoch milliseconds."""
    return int(utc_now().timestamp() * 1000)


@dataclass(frozen=True, kw_only=True)
class TestLifecycleController:
    """Owns the lifecycle of tests from submission to their terminal status.

    Submission validates and persists a test, then hands it to an independent task
    and returns at once. That task opens the relay session, walks the test through
    CREATED, PENDING_AGENT and RUNNING, calls the agent and records exactly one
    terminal status with its result. A launched file transfer keeps its session
    open until the agent announces the retrieved file. Every error raised on that
    task is turned into a FAILED test; none escapes it.
    """

    __test__ = False

    store: RecordStore
    agent: AgentClient = field(repr=False)
    relay: SessionRelay = field(repr=False)
    broadcaster: Broadcaster = field(repr=False)
    uploads: FileStorage = field(repr=False)
    log_dir: Path = Path("tests_logs")
    _tasks: dict[str, asyncio.Task[None]] = field(
        default_factory=dict, init=False, repr=False
    )

    async def submit(self, submission: Submission) -> SubmissionReceipt:
        """Register a test and start its execution without waiting for it.

        Raises:
            ValidationError: If the program, environment or operation is invalid;
                no test is created in that case
            StorageError: If the test cannot be persisted

        """
        return await self._submit(submission, replay_of=None)

    async def replay(self, program_id: str, test_id: str) -> SubmissionReceipt:
        """Run the stored payload of a test again as a new test.

        The replayed test is left untouched.
        """
        original = await self._get_test(test_id)
        if original.program_id != program_id:
            raise ValidationError(
                f"Test {test_id} does not belong to program {program_id}"
            )

        log.info("Replaying test %s of program %s", test_id, original.program_code)
        submission = self._submission_of(original)
        return await self._submit(submission, replay_of=original.id)

    async def get_status(self, test_id: str) -> TestStatusView:
        """Return the persisted status of a test."""
        log.debug("Fetching status of test %s", test_id)
        record = await self._get_test(test_id)

        duration_millis = None
        if record.completed_at is not None:
            elapsed = record.completed_at - record.created_at
            duration_millis = int(elapsed.total_seconds() * 1000)

        return TestStatusView(
            test_id=record.id,
            program_code=record.program_code,
            operation_name=record.operation_name,
            environment=record.environment,
            status=record.status,
            created_at=record.created_at,
            started_at=record.started_at,
            completed_at=record.completed_at,
            duration_millis=duration_millis,
            progress_percentage=progress_percentage(record.status),
            status_message=status_message(record.status),
            retrieved_file=record.retrieved_file,
        )

    async def get_result(self, test_id: str) -> TestOutcome:
        """Return a finished test with its result.

        Raises:
            NotFoundError: If the test is unknown
            ConflictError: If the test has not reached a terminal status
            EmptyResultError: If the test is terminal but has no result

        """
        record = await self._get_test(test_id)
        if not record.status.is_terminal:
            raise ConflictError(
                f"Test {test_id} is not finished yet, current status: {record.status}"
            )

        result = await self.store.get_result(test_id)
        if result is None:
            raise EmptyResultError(f"No result found for test {test_id}")
        return TestOutcome(test=record, result=result)

    async def list_tests(self, program_id: str) -> Sequence[TestRecord]:
        """Return the tests of a program, newest first."""
        tests = await self.store.find_tests("program_id", program_id)
        return sorted(tests, key=lambda t: t.created_at, reverse=True)

    async def wait_for(self, test_id: str) -> None:
        """Wait until the execution task of a test is over."""
        if (task := self._tasks.get(test_id)) is not None:
            await asyncio.wait({task})

    async def drain(self) -> None:
        """Wait until every execution task is over."""
        if self._tasks:
            await asyncio.wait(list(self._tasks.values()))

    async def _submit(
        self, submission: Submission, replay_of: str | None
    ) -> SubmissionReceipt:
        log.info("Submitting a new test for program %s", submission.program_id)

        program = await self._get_active_program(submission.program_id)
        parameters: TestParameters
        if isinstance(submission, OperationSubmission):
            parameters = self._operation_parameters(program, submission)
        else:
            parameters = self._file_transfer_parameters(program, submission)

        record = TestRecord(
            id=str(uuid.uuid4()),
            program_id=program.id,
            program_code=program.code,
            launched_by=submission.launched_by,
            parameters=parameters,
            status=TestStatus.CREATED,
            created_at=utc_now(),
            replay_of=replay_of,
        )
        await self.store.save_test(record)
        log.info("Test created with id %s", record.id)

        self._dispatch(record)

        return SubmissionReceipt(
            test_id=record.id,
            status=record.status,
            message="Test submitted, you will be notified once it is finished",
        )

    async def _get_active_program(self, program_id: str) -> Program:
        program = await self.store.get_program(program_id)
        if program is None:
            raise ProgramNotFoundError(f"Program not found: {program_id}")
        if not program.active:
            raise ValidationError(f"Program {program.code} is disabled")
        return program

    def _operation_parameters(
        self, program: Program, submission: OperationSubmission
    ) -> OperationParameters:
        if not isinstance(program, OperationProgram):
            raise ValidationError(f"Program {program.code} has no operations")

        endpoint = program.endpoint_for(submission.environment)
        if endpoint is None:
            raise ValidationError(
                f"No endpoint configured for environment {submission.environment}"
            )

        if not program.has_operation(submission.operation_name):
            raise InvalidOperationError(
                f"Operation {submission.operation_name!r} does not exist for program "
                f"{program.code}; synchronize the program if needed"
            )

        return OperationParameters(
            environment=submission.environment,
            service_name=program.code,
            operation_name=submission.operation_name,
            wsdl_url=endpoint.wsdl_url,
            endpoint_url=endpoint.endpoint_url,
            request_body=submission.request_body,
            username=submission.username,
            password=submission.password,
            timeout_millis=submission.effective_timeout_millis,
            metadata=submission.metadata,
        )

    def _file_transfer_parameters(
        self, program: Program, submission: FileTransferSubmission
    ) -> FileTransferParameters:
        if not isinstance(program, FileTransferProgram):
            raise ValidationError(f"Program {program.code} does not transfer files")

        if not self.uploads.path(submission.deposit_file).is_file():
            raise ValidationError(f"Deposit file not found: {submission.deposit_file}")

        return FileTransferParameters(
            deposit_file=submission.deposit_file,
            deposit=program.deposit,
            retrieval=program.retrieval,
        )

    @staticmethod
    def _submission_of(record: TestRecord) -> Submission:
        params = record.parameters
        if isinstance(params, OperationParameters):
            return OperationSubmission(
                program_id=record.program_id,
                environment=params.environment,
                operation_name=params.operation_name,
                request_body=params.request_body,
                username=params.username,
                password=params.password,
                timeout_millis=params.timeout_millis,
                launched_by=record.launched_by,
                metadata=params.metadata,
            )
        return FileTransferSubmission(
            program_id=record.program_id,
            deposit_file=params.deposit_file,
            launched_by=record.launched_by,
        )

    def _dispatch(self, record: TestRecord) -> None:
        task = asyncio.create_task(self._run(record), name=f"test-{record.id}")
        self._tasks[record.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(record.id, None))

    async def _run(self, record: TestRecord) -> None:
        await self._open_session(record)
        try:
            await self._execute(record.id)
            if isinstance(record.parameters, FileTransferParameters):
                await self._await_retrieved_file(record.id)
        finally:
            await self._close_session(record.id)

    async def _open_session(self, record: TestRecord) -> None:
        path = transcript_path(self.log_dir, record.program_code, record.id)
        try:
            await self.relay.open(record.id, path)
        except RelayConnectionError as e:
            log.warning("Continuing test %s without live relay: %s", record.id, e)
        except Exception:
            log.exception("Continuing test %s without live relay", record.id)

    async def _await_retrieved_file(self, test_id: str) -> None:
        try:
            record = await self.store.get_test(test_id)
            if record is None or record.status is not TestStatus.SUCCESS:
                return
            log.info("Waiting for the retrieved file of test %s", test_id)
            if not await self.relay.wait_for_file(test_id):
                log.warning("No retrieved file announced for test %s", test_id)
        except Exception:
            log.exception("Failed waiting for the retrieved file of test %s", test_id)

    async def _close_session(self, test_id: str) -> None:
        try:
            await self.relay.close(test_id)
        except Exception:
            log.exception("Failed to close relay session of test %s", test_id)

    async def _execute(self, test_id: str) -> None:
        log.info("Starting asynchronous execution of test %s", test_id)
        try:
            await self._transition(test_id, TestStatus.PENDING_AGENT)
            record = await self._transition(test_id, TestStatus.RUNNING)
            result = await self._call_agent(record)
            await self._finalize(record, result)
        except Exception as e:
            log.exception("Execution of test %s failed", test_id)
            await self._fail(test_id, e)

    async def _call_agent(self, record: TestRecord) -> TestResult:
        params = record.parameters
        if isinstance(params, OperationParameters):
            request = AgentTestRequest(
                session_id=record.id,
                service_name=params.service_name,
                wsdl_url=params.wsdl_url,
                endpoint_url=params.endpoint_url,
                operation_name=params.operation_name,
                request_body=params.request_body,
                username=params.username,
                password=(
                    params.password.get_secret_value() if params.password else None
                ),
                timeout_millis=params.timeout_millis,
                created_at=record.created_at,
                submitted_by=record.launched_by,
                environment=params.environment,
                metadata=params.metadata,
            )
            return self._result_of(record, await self.agent.execute(request))

        content = await self.uploads.read(params.deposit_file)
        request_ = FileTransferRequest(
            session_id=record.id,
            deposit_host=params.deposit.host,
            retrieval_host=params.retrieval.host,
            deposit_path=params.deposit.path,
            retrieval_path=params.retrieval.path,
            deposit_share_name=params.deposit.share_name,
            retrieval_share_name=params.retrieval.share_name,
        )
        start_time = now_millis()
        acknowledgement = await self.agent.launch_file_transfer(
            request_, params.deposit_file, content
        )
        return self._launch_result_of(
            record, acknowledgement, start_time=start_time, end_time=now_millis()
        )

    async def _transition(self, test_id: str, target: TestStatus) -> TestRecord:
        now = utc_now()

        def advance(current: TestRecord) -> TestRecord:
            check_transition(current.status, target)
            update: dict[str, Any] = {"status": target}
            if target is TestStatus.RUNNING:
                update["started_at"] = now
            return current.model_copy(update=update)

        record = await self.store.update_test(test_id, advance)
        log.debug("Test %s moved to %s", test_id, target)
        self._publish_status(test_id, target)
        return record

    async def _finalize(self, record: TestRecord, result: TestResult) -> None:
        """Persist the result and the terminal status, once per test.

        The result is inserted first-wins. The terminal status always follows the
        stored result, also when the writer that stored it failed to write the status.
        """
        if not await self.store.add_result(result):
            stored = await self.store.get_result(record.id)
            if stored is not None:
                log.warning(
                    "Test %s already has a result, keeping the first one", record.id
                )
                result = stored

        target = TestStatus.SUCCESS if result.success else TestStatus.FAILED
        completed_at = utc_now()

        def complete(current: TestRecord) -> TestRecord:
            if current.status.is_terminal:
                return current
            check_transition(current.status, target)
            return current.model_copy(
                update={"status": target, "completed_at": completed_at}
            )

        updated = await self.store.update_test(record.id, complete)
        if updated.completed_at != completed_at:
            log.debug("Test %s was already %s", record.id, updated.status)
            return
        self._publish_status(record.id, updated.status)
        log.info("Test %s finished with status %s", record.id, updated.status)

    async def _fail(self, test_id: str, error: Exception) -> None:
        try:
            record = await self.store.get_test(test_id)
            if record is None:
                log.error("Cannot mark unknown test %s as failed", test_id)
                return

            log.warning("Marking test %s as FAILED: %s", test_id, error)
            now = now_millis()
            result = TestResult(
                id=str(uuid.uuid4()),
                test_id=test_id,
                success=False,
                error_message=f"System error: {str(error) or type(error).__name__}",
                exception_stack_trace="".join(traceback.format_exception(error)),
                start_time=now,
                end_time=now,
                duration_millis=0,
                environment=record.environment,
            )
            await self._finalize(record, result)
        except Exception:
            log.exception("Could not record the failure of test %s", test_id)

    @staticmethod
    def _result_of(record: TestRecord, agent_result: AgentTestResult) -> TestResult:
        duration_millis = agent_result.duration_millis or max(
            agent_result.end_time - agent_result.start_time, 0
        )
        return TestResult(
            id=agent_result.result_id or str(uuid.uuid4()),
            test_id=record.id,
            success=agent_result.success,
            http_status=agent_result.http_status,
            response_body=agent_result.response_body,
            error_message=agent_result.error_message,
            exception_stack_trace=agent_result.exception_stack_trace,
            start_time=agent_result.start_time,
            end_time=agent_result.end_time,
            duration_millis=duration_millis,
            time_taken=agent_result.time_taken,
            executed_by=agent_result.executed_by,
            agent_version=agent_result.agent_version,
            environment=record.environment,
        )

    @staticmethod
    def _launch_result_of(
        record: TestRecord,
        acknowledgement: LaunchAcknowledgement,
        *,
        start_time: int,
        end_time: int,
    ) -> TestResult:
        error_message = None
        if not acknowledgement.success:
            error_message = acknowledgement.message or "Agent refused the file transfer"
        return TestResult(
            id=str(uuid.uuid4()),
            test_id=record.id,
            success=acknowledgement.success,
            response_body=acknowledgement.model_dump_json(
                by_alias=True, exclude_none=True
            ),
            error_message=error_message,
            start_time=start_time,
            end_time=end_time,
            duration_millis=max(end_time - start_time, 0),
            environment=record.environment,
        )

    async def _get_test(self, test_id: str) -> TestRecord:
        record = await self.store.get_test(test_id)
        if record is None:
            raise NotFoundError(f"Test not found: {test_id}")
        return record

    def _publish_status(self, test_id: str, status: TestStatus) -> None:
        self.broadcaster.publish(
            Topic.STATUS.destination(test_id), {"status": status.value}
        )
