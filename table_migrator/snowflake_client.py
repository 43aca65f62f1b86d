"""
Snowflake REST Client Module
Submits SQL statements to the Snowflake SQL REST API and polls them to completion.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import requests

from table_migrator.config_manager import ConfigManager
from table_migrator.errors import ExportCommandError, PollTimeoutError, ResponseParsingError
from table_migrator.schemas import CommandOutcome, PollAttemptState, UnloadCommand
from table_migrator.token_service import TokenRefreshService
from table_migrator.utils.logger import get_logger

logger = get_logger(__name__)

STATEMENTS_ENDPOINT = '/api/v2/statements'
SUCCESS_MESSAGE = 'Statement executed successfully.'

DEFAULT_UNLOAD_STATEMENT = (
    "COPY INTO @{stage_location}/{table_name}/ FROM {source} "
    "FILE_FORMAT = (FORMAT_NAME = '{file_format}') HEADER = TRUE OVERWRITE = TRUE"
)


class SnowflakeRestClient:
    """
    Submit-and-poll client for long-running Snowflake statements.

    A statement is POSTed once. If it did not finish synchronously, its
    handle is polled with capped exponential backoff until it reports
    success or the attempt budget is spent.
    """

    def __init__(
        self,
        token_service: TokenRefreshService,
        snowflake_config: Dict = None,
        session: requests.Session = None,
        run_blocking: Callable[..., Awaitable[Any]] = None,
        sleep: Callable[[float], Awaitable[None]] = None
    ):
        """
        Args:
            token_service: Supplies the bearer token for every call
            snowflake_config: `snowflake` config section
            session: Optional requests session
            run_blocking: Coroutine function used to run blocking HTTP calls
                off the event loop (defaults to `asyncio.to_thread`)
            sleep: Coroutine function used for backoff delays
        """
        if snowflake_config is None:
            snowflake_config = ConfigManager().get_snowflake_config()

        self.token_service = token_service
        self.account_url = snowflake_config.get('account_url', '').rstrip('/')

        # Polling
        self.max_attempts = snowflake_config.get('max_attempts', 3)
        self.poll_duration = snowflake_config.get('poll_duration', 3)
        self.backoff_base = snowflake_config.get('backoff_base', 3)

        # Transport retries
        self.max_retries = snowflake_config.get('max_retries', 3)
        self.retry_delay = snowflake_config.get('retry_delay', 1)
        self.request_timeout = snowflake_config.get('request_timeout', 30)

        self.statement_timeout = snowflake_config.get('statement_timeout', 60)
        self.unload_statement = snowflake_config.get('unload_statement') or DEFAULT_UNLOAD_STATEMENT

        self._session = session or self._create_session()
        self._run_blocking = run_blocking or asyncio.to_thread
        self._sleep = sleep or asyncio.sleep

    def _create_session(self) -> requests.Session:
        """Create requests session with JSON headers."""
        session = requests.Session()
        session.headers.update({
            'Accept': 'application/json',
            'Content-Type': 'application/json',
            'X-Snowflake-Authorization-Token-Type': 'OAUTH'
        })
        return session

    # ========================================
    # Commands
    # ========================================

    def build_unload_command(
        self,
        table_name: str,
        database: str,
        schema: str,
        stage_location: str,
        file_format: str,
        warehouse: str = None,
        query: str = None
    ) -> UnloadCommand:
        """
        Build the export statement for one table.

        Args:
            query: Optional extraction query; when set the table is exported
                through `(query)` instead of in full
        """
        source = f"({query})" if query else table_name
        statement = self.unload_statement.format(
            stage_location=stage_location.rstrip('/'),
            table_name=table_name,
            source=source,
            file_format=file_format
        )
        return UnloadCommand(
            statement=statement,
            database=database,
            schema=schema,
            table_name=table_name,
            warehouse=warehouse,
            timeout=self.statement_timeout
        )

    async def submit_and_poll(self, command: UnloadCommand) -> CommandOutcome:
        """
        Submit a statement and wait for it to complete.

        Returns:
            CommandOutcome with the statement handle

        Raises:
            ExportCommandError: Transport failure or non-success HTTP status
            PollTimeoutError: Statement did not finish within the attempt budget
            ResponseParsingError: Malformed response body
        """
        logger.info(f"Submitting statement for table {command.table_name}: {command.statement}")

        body = await self._call('POST', self.account_url + STATEMENTS_ENDPOINT, command.to_body(), command.table_name)
        message = body['message']
        handle = body.get('statementHandle')

        if message == SUCCESS_MESSAGE:
            logger.info(f"Statement {handle} for table {command.table_name} completed synchronously")
            return CommandOutcome(statement_handle=handle, message=message, attempts=0)

        if not handle:
            raise ResponseParsingError(
                "Error: Statement response has no statement handle to poll",
                table_name=command.table_name
            )

        return await self.poll(handle, command.table_name)

    async def poll(self, statement_handle: str, table_name: str = None) -> CommandOutcome:
        """
        Poll a statement handle until it reports success.

        Delay before attempt n+1 is min(backoff_base ** n, poll_duration).
        """
        state = PollAttemptState(statement_handle=statement_handle)
        url = f"{self.account_url}{STATEMENTS_ENDPOINT}/{statement_handle}"

        while True:
            body = await self._call('GET', url, None, table_name)
            message = body['message']

            if message == SUCCESS_MESSAGE:
                logger.info(
                    f"Statement {statement_handle} completed after {state.attempt} retries "
                    f"({state.elapsed:.1f}s)"
                )
                return CommandOutcome(statement_handle=statement_handle, message=message, attempts=state.attempt)

            if state.attempt < self.max_attempts:
                delay = min(self.backoff_base ** state.attempt, self.poll_duration)
                logger.debug(
                    f"Statement {statement_handle} not finished ({message}), "
                    f"attempt {state.attempt}, retrying in {delay}s"
                )
                await self._sleep(delay)
                state.attempt += 1
            else:
                logger.error(f"Statement {statement_handle} did not finish after {state.attempt} retries")
                raise PollTimeoutError(table_name=table_name)

    # ========================================
    # Transport
    # ========================================

    async def _call(self, method: str, url: str, payload: Optional[Dict], table_name: str) -> Dict:
        """Run one HTTP call on the worker pool, retrying transient transport errors."""
        attempt = 0
        while True:
            try:
                response = await self._run_blocking(self._send, method, url, payload)
                break
            except (requests.ConnectionError, requests.Timeout) as e:
                if attempt >= self.max_retries:
                    logger.error(f"{method} {url} failed after {attempt} retries: {e}")
                    raise ExportCommandError(
                        f"Error: Snowflake REST API unreachable: {e}",
                        table_name=table_name
                    ) from e
                attempt += 1
                logger.warning(f"{method} {url} failed ({e}), retry {attempt}/{self.max_retries}")
                await self._sleep(self.retry_delay)

        if response.status_code == 401:
            self.token_service.invalidate()
        if not 200 <= response.status_code < 300:
            raise ExportCommandError(
                f"Error: Snowflake REST API returned {response.status_code}: {response.text}",
                table_name=table_name
            )

        return self._parse_body(response, table_name)

    def _send(self, method: str, url: str, payload: Optional[Dict]) -> requests.Response:
        token = self.token_service.get_access_token()
        return self._session.request(
            method=method,
            url=url,
            json=payload,
            headers={'Authorization': f'Bearer {token}'},
            timeout=self.request_timeout
        )

    @staticmethod
    def _parse_body(response: requests.Response, table_name: str = None) -> Dict:
        try:
            body = response.json()
        except ValueError as e:
            raise ResponseParsingError(table_name=table_name) from e

        if not isinstance(body, dict) or not body.get('message'):
            logger.error(f"Unexpected Snowflake response body: {response.text}")
            raise ResponseParsingError(table_name=table_name)
        return body
