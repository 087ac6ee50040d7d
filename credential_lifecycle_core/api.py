"""
Operation boundary.

``IntegrationAPI`` is what a transport layer (HTTP handlers, queue
triggers, CLI) calls. Every operation opens its own session, runs the
service call and returns a result object. Errors never escape: our own
errors become ``success=False`` with their message and code, anything
unexpected is logged with its traceback and reported as an internal
error without details.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import ValidationError as PydanticValidationError

from .constants import CredentialKind, IntegrationAction, IntegrationLogLevel, IntegrationStatus, Limits
from .context.app_context import AppContext
from .exceptions import BaseError, ErrorCode, ProviderError, ValidationError
from .schemas.credential_schemas import CredentialSecrets, SaveCredentialRequest
from .schemas.result_schemas import OAuthStart, OperationResult, StoreCredentialResult, WebhookReceipt
from .services.token_refresh_service import RefreshOutcome
from .utils.logger import get_logger
from .utils.token_utils import code_challenge_s256

R = TypeVar("R", bound=OperationResult)


class IntegrationAPI:
    """The exposed operations of the credential lifecycle core."""

    def __init__(self, context: AppContext):
        self.context = context
        self.logger = get_logger()

    def _guard(self, operation: str, fn: Callable[[], R], result_cls: Type[R] = OperationResult) -> R:
        try:
            return fn()
        except BaseError as e:
            return result_cls.from_error(e)
        except PydanticValidationError as e:
            message = "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
            )
            return result_cls.failure_result(message, ErrorCode.VALIDATION_FAILED)
        except Exception as e:
            self.logger.exception(
                f"Unhandled error in {operation}",
                extra={"operation": operation, "error_type": type(e).__name__},
            )
            return result_cls.failure_result("Internal error", ErrorCode.INTERNAL_ERROR)

    # ==================== CREDENTIALS ====================

    def store_credential(
        self,
        user_id: str,
        platform: str,
        platform_name: str,
        kind: Union[CredentialKind, str] = CredentialKind.OAUTH,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        scopes: Optional[List[str]] = None,
        expires_at: Optional[datetime] = None,
        additional_data: Optional[Dict[str, Any]] = None,
        workspace_id: Optional[str] = None,
    ) -> StoreCredentialResult:
        def run() -> StoreCredentialResult:
            request = SaveCredentialRequest(
                user_id=user_id,
                platform=platform,
                platform_name=platform_name,
                kind=kind,
                secrets=CredentialSecrets(
                    access_token=access_token,
                    refresh_token=refresh_token,
                    api_key=api_key,
                    api_secret=api_secret,
                ),
                scopes=scopes,
                expires_at=expires_at,
                additional_data=additional_data,
                workspace_id=workspace_id,
            )
            with self.context.session_scope() as session:
                return self.context.credential_store(session).save_credential(request)

        return self._guard("store_credential", run, StoreCredentialResult)

    def get_credential(self, user_id: str, platform: str, include_secrets: bool = False) -> OperationResult:
        def run() -> OperationResult:
            with self.context.session_scope() as session:
                credential = self.context.credential_store(session).get_credential(
                    user_id, platform, include_secrets=include_secrets
                )
            if credential is None:
                return OperationResult.failure_result(
                    f"Credential not found: user_id={user_id}, platform={platform}", ErrorCode.NOT_FOUND
                )
            data = credential.model_dump(exclude={"secrets"})
            if credential.secrets is not None:
                data["secrets"] = credential.secrets.model_dump()
            return OperationResult.success_result(credential=data)

        return self._guard("get_credential", run)

    def revoke(self, user_id: str, platform: str) -> OperationResult:
        """Disconnect: best-effort provider revoke, then local deactivation."""

        def run() -> OperationResult:
            with self.context.session_scope() as session:
                integration = self.context.credential_store(session).deactivate_credential(user_id, platform)
            return OperationResult.success_result(integration=integration.model_dump())

        return self._guard("revoke", run)

    def update_credential_status(
        self, user_id: str, platform: str, status: Union[IntegrationStatus, str]
    ) -> OperationResult:
        def run() -> OperationResult:
            try:
                target = IntegrationStatus(status)
            except ValueError as e:
                raise ValidationError(f"Invalid status: {status}", field="status", cause=e) from e
            with self.context.session_scope() as session:
                integration = self.context.credential_store(session).update_credential_status(
                    user_id, platform, target
                )
            return OperationResult.success_result(integration=integration.model_dump())

        return self._guard("update_credential_status", run)

    # ==================== REFRESH & HEALTH ====================

    def refresh_one(self, user_id: str, platform: str) -> OperationResult:
        def run() -> OperationResult:
            with self.context.session_scope() as session:
                report = self.context.refresh_service(session).refresh_one(user_id, platform, force=True)
            data = {"integration_id": report.integration_id, "outcome": report.outcome.value}
            if report.outcome == RefreshOutcome.ERROR:
                return OperationResult.failure_result(
                    report.error or "Token refresh failed", report.error_code or ErrorCode.PROVIDER_ERROR, **data
                )
            return OperationResult.success_result(**data)

        return self._guard("refresh_one", run)

    def health_check_all(self) -> OperationResult:
        def run() -> OperationResult:
            summary = self.context.run_health_sweep()
            return OperationResult.success_result(**summary.model_dump())

        return self._guard("health_check_all", run)

    # ==================== WEBHOOKS ====================

    def receive_webhook(
        self,
        provider_key: str,
        headers: Optional[Mapping[str, Any]],
        body: Union[str, bytes, Dict[str, Any], None],
    ) -> WebhookReceipt:
        def run() -> WebhookReceipt:
            with self.context.session_scope() as session:
                return self.context.webhook_ingestor(session).receive(provider_key, headers, body)

        return self._guard("receive_webhook", run, WebhookReceipt)

    # ==================== OAUTH ====================

    def begin_oauth(
        self,
        user_id: str,
        platform: str,
        redirect_uri: str,
        scopes: Optional[List[str]] = None,
        use_pkce: bool = True,
    ) -> OAuthStart:
        def run() -> OAuthStart:
            provider = self.context.registry.get(platform)
            client_id, _ = self.context.config.providers.client_credentials(platform)
            if not client_id:
                raise ProviderError(f"Missing {provider.name} OAuth client credentials", provider_key=platform)

            with self.context.session_scope() as session:
                state = self.context.oauth_state_service(session).create_state(
                    user_id, platform, redirect_uri=redirect_uri, scopes=scopes, use_pkce=use_pkce
                )
            url = provider.build_authorization_url(
                client_id,
                redirect_uri,
                state.state,
                scopes=state.scopes,
                code_challenge=code_challenge_s256(state.code_verifier) if state.code_verifier else None,
            )
            return OAuthStart(success=True, authorization_url=url, state=state.state)

        return self._guard("begin_oauth", run, OAuthStart)

    def complete_oauth(
        self, state: str, platform: str, code: str, workspace_id: Optional[str] = None
    ) -> StoreCredentialResult:
        """Consume the state, exchange the code and store the resulting credential."""

        def run() -> StoreCredentialResult:
            provider = self.context.registry.get(platform)
            with self.context.session_scope() as session:
                consumed = self.context.oauth_state_service(session).consume_state(state, platform)

            client_id, client_secret = self.context.config.providers.client_credentials(platform)
            if not client_id or not client_secret:
                raise ProviderError(f"Missing {provider.name} OAuth client credentials", provider_key=platform)

            exchange = provider.run_exchange_code(
                code, client_id, client_secret, consumed.redirect_uri or "", consumed.code_verifier
            )
            if not exchange.success:
                self._log_oauth_failure(consumed.user_id, platform, exchange.error)
                return StoreCredentialResult.failure_result(
                    exchange.error or "Authorization code exchange failed", ErrorCode.PROVIDER_ERROR
                )

            request = SaveCredentialRequest(
                user_id=consumed.user_id,
                platform=platform,
                platform_name=provider.name,
                kind=CredentialKind.OAUTH,
                secrets=CredentialSecrets(
                    access_token=exchange.access_token, refresh_token=exchange.refresh_token
                ),
                scopes=exchange.scopes or consumed.scopes,
                expires_at=exchange.expires_at,
                additional_data=exchange.additional_data,
                workspace_id=workspace_id,
            )
            with self.context.session_scope() as session:
                return self.context.credential_store(session).save_credential(request)

        return self._guard("complete_oauth", run, StoreCredentialResult)

    def _log_oauth_failure(self, user_id: str, platform: str, error: Optional[str]) -> None:
        with self.context.session_scope() as session:
            self.context.log_service(session).write(
                user_id=user_id,
                platform=platform,
                action=IntegrationAction.OAUTH_CALLBACK,
                status=IntegrationStatus.ERROR,
                level=IntegrationLogLevel.ERROR,
                message=f"OAuth callback failed: {error}",
            )
            session.commit()

    # ==================== READS ====================

    def list_integrations(self, user_id: str) -> OperationResult:
        def run() -> OperationResult:
            with self.context.session_scope() as session:
                integrations = self.context.credential_store(session).list_integrations(user_id)
            return OperationResult.success_result(integrations=[i.model_dump() for i in integrations])

        return self._guard("list_integrations", run)

    def get_integration(self, user_id: str, integration_id: str) -> OperationResult:
        def run() -> OperationResult:
            with self.context.session_scope() as session:
                integration = self.context.credential_store(session).get_integration(user_id, integration_id)
            if integration is None:
                return OperationResult.failure_result(
                    f"Integration not found: integration_id={integration_id}", ErrorCode.NOT_FOUND
                )
            return OperationResult.success_result(integration=integration.model_dump())

        return self._guard("get_integration", run)

    def get_integration_logs(
        self, user_id: str, platform: Optional[str] = None, limit: int = Limits.DEFAULT_LOG_PAGE_SIZE
    ) -> OperationResult:
        def run() -> OperationResult:
            with self.context.session_scope() as session:
                logs = self.context.log_service(session).list_logs(user_id, platform=platform, limit=limit)
            return OperationResult.success_result(logs=[log.model_dump() for log in logs])

        return self._guard("get_integration_logs", run)

    def retry_bootstrap(self, user_id: str, integration_id: str) -> OperationResult:
        def run() -> OperationResult:
            with self.context.session_scope() as session:
                job = self.context.bootstrap_orchestrator(session).retry_bootstrap(user_id, integration_id)
            return OperationResult.success_result(job=job.model_dump())

        return self._guard("retry_bootstrap", run)
