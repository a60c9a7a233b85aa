"""Summary: Application factory wiring configuration, credentials, and services.

Importance: Centralizes dependency creation for the CLI and the HTTP API.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from unipile_cli.config import (
    AppConfig,
    ProfileConfig,
    ProfilesConfig,
    get_profile,
    load_profiles,
)
from unipile_cli.credentials import (
    ProfileCredentials,
    SecretCodec,
    SecretStore,
    select_secret_store,
)
from unipile_cli.errors import ConfigurationError
from unipile_cli.fetcher import MessageFetcher
from unipile_cli.oracle import OracleFactory
from unipile_cli.services import (
    AccountService,
    ChatListService,
    ContactService,
    DoctorService,
    InboxService,
    SendService,
)
from unipile_cli.unipile import MessagingProvider, UnipileClient


@dataclass(frozen=True)
class AppServices:
    """Summary: Bundle of provider-backed services for one profile.

    Importance: Simplifies passing dependencies to the CLI and API layers.
    Alternatives: Use a dependency injection container.
    """

    accounts: AccountService
    chats: ChatListService
    contacts: ContactService
    sender: SendService
    inbox: InboxService
    provider: MessagingProvider
    profile_name: str


@dataclass(frozen=True)
class AppContext:
    """Summary: Shared context for one invocation: config, selected profile, and credentials.

    Importance: Lets credential-only commands run without building a provider client.
    Alternatives: Build every dependency eagerly for every command.
    """

    config: AppConfig
    profiles: ProfilesConfig
    profile_name: str
    credentials: ProfileCredentials

    @property
    def profile(self) -> ProfileConfig:
        return get_profile(self.profiles, self.profile_name)

    def oracle_factory(self) -> OracleFactory:
        profile = self.profile
        return OracleFactory(
            command=profile.qmd_command,
            collection=profile.qmd_collection,
            timeout_seconds=self.config.qmd_timeout_seconds,
        )

    def build_provider(self) -> MessagingProvider:
        """Summary: Build the REST client for the selected profile.

        Importance: Fails with setup guidance when the DSN or API key is missing.
        Alternatives: Let the first HTTP call fail with a less useful error.
        """

        profile = self.profile
        if not profile.dsn.strip():
            raise ConfigurationError(
                f'Profile "{self.profile_name}" is missing DSN. '
                'Run "unipile auth set --dsn ... --api-key ..." first.'
            )
        api_key = self.credentials.get_api_key(self.profile_name).value
        if not api_key:
            raise ConfigurationError(
                f'Profile "{self.profile_name}" is missing API key. '
                'Run "unipile auth set --dsn ... --api-key ..." first.'
            )
        return UnipileClient(profile.dsn, api_key)

    def services(self, provider: MessagingProvider | None = None) -> AppServices:
        provider = provider or self.build_provider()
        contacts = ContactService(
            provider=provider,
            oracle_factory=self.oracle_factory(),
            policy=self.profile.policy(),
        )
        return AppServices(
            accounts=AccountService(provider=provider),
            chats=ChatListService(provider=provider),
            contacts=contacts,
            sender=SendService(provider=provider, contacts=contacts),
            inbox=InboxService(
                fetcher=MessageFetcher(provider),
                profile_name=self.profile_name,
                state_db_path=self.config.state_db_path,
            ),
            provider=provider,
            profile_name=self.profile_name,
        )

    def doctor(self, provider_factory: Callable[[], MessagingProvider] | None = None) -> DoctorService:
        secret = self.credentials.get_api_key(self.profile_name)
        return DoctorService(
            profile_name=self.profile_name,
            dsn=self.profile.dsn,
            api_key=secret.value,
            secret_backend=secret.backend,
            provider_factory=provider_factory or self.build_provider,
            oracle_factory=self.oracle_factory(),
            state_db_path=self.config.state_db_path,
        )


def build_context(
    config: AppConfig,
    profile_name: str | None = None,
    secret_store: SecretStore | None = None,
) -> AppContext:
    """Summary: Load profiles and select the secret store for one invocation.

    Importance: Profile precedence is the explicit flag, then config.json, then the environment default.
    Alternatives: Always use the default profile.
    """

    profiles = load_profiles(config.config_path)
    stored = profiles.profile if config.config_path.exists() else None
    name = profile_name or stored or config.default_profile
    store = secret_store or select_secret_store(config.config_dir, SecretCodec(config.secret_key))
    return AppContext(
        config=config,
        profiles=profiles,
        profile_name=name,
        credentials=ProfileCredentials(store),
    )


def build_services(
    config: AppConfig,
    profile_name: str | None = None,
    provider: MessagingProvider | None = None,
    secret_store: SecretStore | None = None,
) -> AppServices:
    """Summary: Build provider-backed services from configuration.

    Importance: Provides a single construction path for the application.
    Alternatives: Instantiate services directly within the CLI entrypoint.
    """

    context = build_context(config, profile_name=profile_name, secret_store=secret_store)
    return context.services(provider=provider)
