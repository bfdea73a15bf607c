from dataclasses import dataclass

from config.settings import Settings
from domain.exceptions.currency import ConfigurationError, UnknownFeedError
from domain.models.currency import CurrencyPair, ProviderRegistration
from infrastructure.providers.base import RateFeedAdapter


@dataclass(frozen=True)
class RegistryEntry:
	registration: ProviderRegistration
	adapter: RateFeedAdapter | None = None


class ProviderRegistry:
	"""Explicit provider_id -> (adapter, registration) mapping handed to the scheduler and queries."""

	def __init__(self):
		self._entries: dict[str, RegistryEntry] = {}

	def register(
		self, registration: ProviderRegistration, adapter: RateFeedAdapter | None = None
	) -> None:
		if adapter is not None and adapter.provider_id != registration.provider_id:
			raise ConfigurationError(
				f'Adapter {adapter.provider_id} registered as {registration.provider_id}'
			)
		if registration.provider_id in self._entries:
			raise ConfigurationError(f'Provider {registration.provider_id} is already registered')
		self._entries[registration.provider_id] = RegistryEntry(registration, adapter)

	def __contains__(self, provider_id: str) -> bool:
		return provider_id in self._entries

	def __len__(self) -> int:
		return len(self._entries)

	def provider_ids(self) -> list[str]:
		return list(self._entries)

	def registration(self, provider_id: str) -> ProviderRegistration:
		try:
			return self._entries[provider_id].registration
		except KeyError as e:
			raise UnknownFeedError(f'Provider {provider_id} is not registered') from e

	def adapter(self, provider_id: str) -> RateFeedAdapter:
		entry = self._entries.get(provider_id)
		if entry is None or entry.adapter is None:
			raise UnknownFeedError(f'No feed adapter registered for {provider_id}')
		return entry.adapter

	def adapters(self) -> list[RateFeedAdapter]:
		return [entry.adapter for entry in self._entries.values() if entry.adapter is not None]

	def priority(self, provider_id: str) -> int:
		return self.registration(provider_id).priority

	def providers_for(self, pair: CurrencyPair) -> list[ProviderRegistration]:
		"""Registrations that may answer for the pair, highest priority first."""
		matching = [
			entry.registration
			for entry in self._entries.values()
			if entry.registration.supports(pair)
		]
		return sorted(matching, key=lambda r: r.priority, reverse=True)

	@classmethod
	def from_adapters(cls, adapters: list[RateFeedAdapter], settings: Settings) -> 'ProviderRegistry':
		registry = cls()
		feeds = settings.feeds()
		for adapter in adapters:
			feed = feeds.get(adapter.provider_id)
			priority = feed.priority if feed else 0
			registry.register(ProviderRegistration(adapter.provider_id, priority), adapter)
		return registry

	async def close(self) -> None:
		for adapter in self.adapters():
			await adapter.close()
