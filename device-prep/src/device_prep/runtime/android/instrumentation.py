"""Instrumentation test runs: `am instrument` command builder and result parsing.

`InstrumentationTestRunner` builds an `am instrument -w -r` shell command.
`InstrumentationResultParser` consumes the raw (`-r`) output line by line and
reports test lifecycle events to listeners; `CollectingTestListener` keeps the
per-test outcome so callers can ask whether anything failed.

Raw output looks like:

    INSTRUMENTATION_STATUS: class=com.example.FooTest
    INSTRUMENTATION_STATUS: test=testBar
    INSTRUMENTATION_STATUS: numtests=2
    INSTRUMENTATION_STATUS_CODE: 1
    ...
    INSTRUMENTATION_CODE: -1
"""

from __future__ import annotations

import logging
import re
import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_RUNNER_NAME = "android.test.InstrumentationTestRunner"

STATUS_CODE_START = 1
STATUS_CODE_OK = 0
STATUS_CODE_ERROR = -1
STATUS_CODE_FAILURE = -2
STATUS_CODE_IGNORED = -3
STATUS_CODE_ASSUMPTION_FAILURE = -4

_STATUS_PREFIX = "INSTRUMENTATION_STATUS: "
_STATUS_CODE_PREFIX = "INSTRUMENTATION_STATUS_CODE: "
_RESULT_PREFIX = "INSTRUMENTATION_RESULT: "
_CODE_PREFIX = "INSTRUMENTATION_CODE: "
_FAILED_PREFIX = "INSTRUMENTATION_FAILED: "

_KEY_VALUE_RE = re.compile(r"^(?P<key>[^=]+)=(?P<value>.*)$", flags=re.DOTALL)

INCOMPLETE_TEST_MESSAGE = "Test failed to run to completion."
INCOMPLETE_RUN_MESSAGE = "Test run failed to complete."


class TestStatus(str, Enum):
    __test__ = False

    STARTED = "started"
    PASSED = "passed"
    FAILURE = "failure"
    ERROR = "error"
    IGNORED = "ignored"
    ASSUMPTION_FAILURE = "assumption_failure"
    INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class TestIdentifier:
    __test__ = False

    class_name: str
    test_name: str

    def __str__(self) -> str:
        return f"{self.class_name}#{self.test_name}"


@dataclass
class TestResult:
    __test__ = False

    status: TestStatus = TestStatus.STARTED
    stack_trace: Optional[str] = None
    metrics: Dict[str, str] = field(default_factory=dict)


class InstrumentationTestRunner:
    """Builds the `am instrument` command for one instrumentation package."""

    def __init__(self, package_name: str, runner_name: Optional[str] = None) -> None:
        if not package_name:
            raise ValueError("package_name must be non-empty")
        self._package_name = package_name
        self._runner_name = runner_name or DEFAULT_RUNNER_NAME
        self._args: Dict[str, str] = {}

    @property
    def package_name(self) -> str:
        return self._package_name

    @property
    def runner_name(self) -> str:
        return self._runner_name

    @property
    def run_name(self) -> str:
        return self._package_name

    def set_class_name(self, class_name: str) -> None:
        self._args["class"] = class_name

    def set_method_name(self, class_name: str, method_name: str) -> None:
        self._args["class"] = f"{class_name}#{method_name}"

    def add_instrumentation_arg(self, key: str, value: str) -> None:
        self._args[str(key)] = str(value)

    def instrumentation_args(self) -> Dict[str, str]:
        return dict(self._args)

    def build_command(self) -> str:
        parts: list[str] = ["am", "instrument", "-w", "-r"]
        for key, value in self._args.items():
            parts += ["-e", key, value]
        parts.append(f"{self._package_name}/{self._runner_name}")
        return " ".join(shlex.quote(p) for p in parts)


class TestRunListener:
    """No-op base listener; subclasses override the events they care about."""

    __test__ = False

    def test_run_started(self, run_name: str, test_count: int) -> None:
        pass

    def test_started(self, test: TestIdentifier) -> None:
        pass

    def test_failed(self, test: TestIdentifier, trace: str) -> None:
        pass

    def test_error(self, test: TestIdentifier, trace: str) -> None:
        pass

    def test_assumption_failure(self, test: TestIdentifier, trace: str) -> None:
        pass

    def test_ignored(self, test: TestIdentifier) -> None:
        pass

    def test_incomplete(self, test: TestIdentifier, trace: str) -> None:
        pass

    def test_ended(self, test: TestIdentifier, metrics: Mapping[str, str]) -> None:
        pass

    def test_run_failed(self, message: str) -> None:
        pass

    def test_run_ended(self, metrics: Mapping[str, str]) -> None:
        pass


class CollectingTestListener(TestRunListener):
    """Collects per-test results from a single instrumentation run."""

    def __init__(self) -> None:
        self.run_name: Optional[str] = None
        self.expected_test_count = 0
        self.results: Dict[TestIdentifier, TestResult] = {}
        self.run_failure_message: Optional[str] = None
        self.run_metrics: Dict[str, str] = {}
        self.run_complete = False

    def test_run_started(self, run_name: str, test_count: int) -> None:
        self.run_name = run_name
        self.expected_test_count = int(test_count)

    def test_started(self, test: TestIdentifier) -> None:
        self.results[test] = TestResult()

    def _set(self, test: TestIdentifier, status: TestStatus, trace: Optional[str] = None) -> None:
        result = self.results.setdefault(test, TestResult())
        result.status = status
        if trace is not None:
            result.stack_trace = trace

    def test_failed(self, test: TestIdentifier, trace: str) -> None:
        self._set(test, TestStatus.FAILURE, trace)

    def test_error(self, test: TestIdentifier, trace: str) -> None:
        self._set(test, TestStatus.ERROR, trace)

    def test_assumption_failure(self, test: TestIdentifier, trace: str) -> None:
        self._set(test, TestStatus.ASSUMPTION_FAILURE, trace)

    def test_ignored(self, test: TestIdentifier) -> None:
        self._set(test, TestStatus.IGNORED)

    def test_incomplete(self, test: TestIdentifier, trace: str) -> None:
        self._set(test, TestStatus.INCOMPLETE, trace)

    def test_ended(self, test: TestIdentifier, metrics: Mapping[str, str]) -> None:
        result = self.results.setdefault(test, TestResult())
        if result.status == TestStatus.STARTED:
            result.status = TestStatus.PASSED
        result.metrics.update(metrics)

    def test_run_failed(self, message: str) -> None:
        self.run_failure_message = message

    def test_run_ended(self, metrics: Mapping[str, str]) -> None:
        self.run_metrics.update(metrics)
        self.run_complete = True

    def tests_with_status(self, status: TestStatus) -> List[TestIdentifier]:
        return [t for t, r in self.results.items() if r.status == status]

    def has_failed_tests(self) -> bool:
        failing = {TestStatus.FAILURE, TestStatus.ERROR, TestStatus.INCOMPLETE}
        return any(r.status in failing for r in self.results.values())

    def has_run_failure(self) -> bool:
        return self.run_failure_message is not None


class InstrumentationResultParser:
    """Parses `am instrument -r` output and forwards events to listeners."""

    def __init__(self, run_name: str, listeners: Sequence[TestRunListener]) -> None:
        self._run_name = run_name
        self._listeners = list(listeners)
        self._status: Dict[str, str] = {}
        self._result: Dict[str, str] = {}
        self._current_bundle: Optional[Dict[str, str]] = None
        self._current_key: Optional[str] = None
        self._current_test: Optional[TestIdentifier] = None
        self._run_started = False
        self._run_failed = False
        self._instrumentation_code: Optional[int] = None
        self._done = False

    def _emit(self, event: str, *args) -> None:
        for listener in self._listeners:
            getattr(listener, event)(*args)

    def process_output(self, text: str) -> None:
        self.process_lines(text.splitlines())

    def process_lines(self, lines: Iterable[str]) -> None:
        for raw in lines:
            self._parse_line(raw.rstrip("\r"))

    def _store_key_value(self, bundle: Dict[str, str], payload: str) -> None:
        m = _KEY_VALUE_RE.match(payload)
        if not m:
            self._current_key = None
            return
        key = m.group("key").strip()
        bundle[key] = m.group("value")
        self._current_bundle = bundle
        self._current_key = key

    def _parse_line(self, line: str) -> None:
        if line.startswith(_STATUS_CODE_PREFIX):
            self._current_key = None
            code = _parse_int(line[len(_STATUS_CODE_PREFIX) :])
            self._handle_status(code)
        elif line.startswith(_STATUS_PREFIX):
            self._store_key_value(self._status, line[len(_STATUS_PREFIX) :])
        elif line.startswith(_RESULT_PREFIX):
            self._store_key_value(self._result, line[len(_RESULT_PREFIX) :])
        elif line.startswith(_CODE_PREFIX):
            self._current_key = None
            self._instrumentation_code = _parse_int(line[len(_CODE_PREFIX) :])
        elif line.startswith(_FAILED_PREFIX):
            self._current_key = None
            self._fail_run(line[len(_FAILED_PREFIX) :].strip() or INCOMPLETE_RUN_MESSAGE)
        elif self._current_key is not None and self._current_bundle is not None:
            # Continuation of a multi-line value (usually a stack trace).
            prev = self._current_bundle.get(self._current_key, "")
            self._current_bundle[self._current_key] = f"{prev}\n{line}"

    def _ensure_run_started(self, test_count: int) -> None:
        if not self._run_started:
            self._run_started = True
            self._emit("test_run_started", self._run_name, test_count)

    def _fail_run(self, message: str) -> None:
        if self._run_failed:
            return
        self._run_failed = True
        self._ensure_run_started(0)
        logger.warning("instrumentation run %s failed: %s", self._run_name, message)
        self._emit("test_run_failed", message)

    def _handle_status(self, code: Optional[int]) -> None:
        bundle, self._status = self._status, {}
        class_name = bundle.get("class", "")
        test_name = bundle.get("test", "")
        self._ensure_run_started(_parse_int(bundle.get("numtests", "0")) or 0)
        if not class_name or not test_name or code is None:
            return

        test = TestIdentifier(class_name, test_name)
        trace = bundle.get("stack", "")
        if code == STATUS_CODE_START:
            self._close_incomplete_test()
            self._current_test = test
            self._emit("test_started", test)
            return

        if code == STATUS_CODE_OK:
            pass
        elif code == STATUS_CODE_FAILURE:
            self._emit("test_failed", test, trace)
        elif code == STATUS_CODE_IGNORED:
            self._emit("test_ignored", test)
        elif code == STATUS_CODE_ASSUMPTION_FAILURE:
            self._emit("test_assumption_failure", test, trace)
        else:
            if code != STATUS_CODE_ERROR:
                logger.error("unrecognized status code %d for %s; treating as error", code, test)
            self._emit("test_error", test, trace)
        self._emit("test_ended", test, {})
        self._current_test = None

    def _close_incomplete_test(self) -> None:
        test = self._current_test
        if test is None:
            return
        self._current_test = None
        self._emit("test_incomplete", test, INCOMPLETE_TEST_MESSAGE)
        self._emit("test_ended", test, {})

    def done(self) -> None:
        """Flush state once the output stream has ended."""

        if self._done:
            return
        self._done = True

        if self._current_test is not None:
            self._close_incomplete_test()
            self._fail_run(INCOMPLETE_RUN_MESSAGE)
        short_msg = self._result.get("shortMsg")
        if short_msg:
            self._fail_run(short_msg.strip())
        if self._instrumentation_code is None:
            self._fail_run(INCOMPLETE_RUN_MESSAGE)

        self._ensure_run_started(0)
        metrics = {k: v for k, v in self._result.items() if k not in {"shortMsg", "longMsg"}}
        self._emit("test_run_ended", metrics)


def _parse_int(raw: str) -> Optional[int]:
    try:
        return int(str(raw).strip())
    except ValueError:
        return None
