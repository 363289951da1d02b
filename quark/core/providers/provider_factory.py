from quark.core.config import QuarkSettings
from quark.core.exceptions import ValidationError
from quark.core.providers.base_provider import CloudProvider, DnsProvider
from quark.core.providers.cloudflare.cloudflare_dns import CloudflareConfig, CloudflareDnsProvider
from quark.core.providers.hetzner.hetzner_provider import HetznerConfig, HetznerProvider


class ProviderFactory:
    @staticmethod
    def get_provider(settings: QuarkSettings) -> CloudProvider:
        if settings.provider.lower() == "hetzner":
            return HetznerProvider(HetznerConfig(api_token=settings.provider_token))

        raise ValidationError(f"Unknown provider: {settings.provider}")

    @staticmethod
    def get_dns_provider(settings: QuarkSettings) -> DnsProvider:
        if settings.dns_provider.lower() == "cloudflare":
            return CloudflareDnsProvider(CloudflareConfig(api_token=settings.dns_token))

        raise ValidationError(f"Unknown DNS provider: {settings.dns_provider}")
