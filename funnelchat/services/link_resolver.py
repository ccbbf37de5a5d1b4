"""Placeholder substitution for outgoing bot messages.

Block messages may carry a [LINK] placeholder. On OFFER-stage blocks with a
resource it becomes a call-to-action button pointing at the resource (with the
affiliate app id attached); everywhere else it becomes a visible fallback.
Transition DMs may carry [LINK_TO_PRIVATE_CHAT] and [LINK].
"""

from typing import Optional

from funnelchat.config import settings
from funnelchat.logging_config import get_logger
from funnelchat.services.funnel_graph import FunnelBlock, FunnelGraph
from funnelchat.services.phase_classifier import StageRole, stage_role
from funnelchat.services.platform_client import (
    AppLinkGenerator,
    PlatformClient,
    append_tracking_param,
    has_affiliate_params,
)
from funnelchat.services.storage.base import ResourceCatalog, TenantDirectory

logger = get_logger("link_resolver")

LINK_PLACEHOLDER = "[LINK]"
PRIVATE_CHAT_PLACEHOLDER = "[LINK_TO_PRIVATE_CHAT]"

RESOURCE_NOT_FOUND = "[Resource not found]"
RESOURCE_ERROR = "[Error loading resource]"
LINK_NOT_AVAILABLE = "[Link not available]"

BUTTON_TEMPLATE = '<div class="animated-gold-button" data-href="{url}">Get Your Free Guide</div>'


def render_button(url: str) -> str:
    return BUTTON_TEMPLATE.format(url=url)


class LinkResolver:
    def __init__(
        self,
        resources: ResourceCatalog,
        tenants: TenantDirectory,
        platform: PlatformClient,
        app_links: AppLinkGenerator,
        app_base_url: Optional[str] = None,
    ):
        self.resources = resources
        self.tenants = tenants
        self.platform = platform
        self.app_links = app_links
        self.app_base_url = (app_base_url or settings.app_base_url).rstrip("/")

    def resolve_block_message(self, block_id: Optional[str], graph: FunnelGraph, experience_id: str) -> str:
        """Block message with [LINK] resolved. Never raises, never returns a raw [LINK]."""
        block = graph.get_block(block_id)
        if block is None:
            return ""
        message = block.message or ""
        if LINK_PLACEHOLDER not in message:
            return message

        if stage_role(block_id, graph) == StageRole.OFFER and block.resource_name:
            replacement = self._offer_link(block, experience_id)
        else:
            replacement = LINK_NOT_AVAILABLE
        return message.replace(LINK_PLACEHOLDER, replacement)

    def _offer_link(self, block: FunnelBlock, experience_id: str) -> str:
        try:
            resource = self.resources.find_by_name_and_tenant(block.resource_name, experience_id)
            if resource is None or not resource.link:
                logger.warning(
                    "Offer resource not found",
                    extra={"context": {"block_id": block.id, "resource_name": block.resource_name}},
                )
                return RESOURCE_NOT_FOUND

            url = resource.link
            if not has_affiliate_params(url):
                url = append_tracking_param(url, self._affiliate_app_id(experience_id))
            return render_button(url)
        except Exception as e:
            logger.error(
                f"Failed to resolve offer link: {e}",
                extra={"context": {"block_id": block.id, "resource_name": block.resource_name}},
            )
            return RESOURCE_ERROR

    def _affiliate_app_id(self, experience_id: str) -> str:
        """Platform app id for the tenant, falling back to the tenant id."""
        try:
            tenant = self.tenants.get_tenant(experience_id)
            if tenant is not None:
                app_id = self.platform.get_experience_app_id(tenant.platform_experience_id)
                if app_id:
                    return app_id
        except Exception as e:
            logger.warning(f"Affiliate app id lookup failed, using experience id: {e}")
        return str(experience_id)

    def private_chat_link(self, conversation_id: str, experience_id: str) -> str:
        return f"{self.app_base_url}/experiences/{experience_id}/chat/{conversation_id}"

    def resolve_transition_message(self, template: str, conversation_id: str, experience_id: str) -> str:
        message = template or ""
        if PRIVATE_CHAT_PLACEHOLDER in message:
            message = message.replace(PRIVATE_CHAT_PLACEHOLDER, self.private_chat_link(conversation_id, experience_id))
        if LINK_PLACEHOLDER in message:
            app_link = self._app_link(experience_id)
            if app_link:
                message = message.replace(LINK_PLACEHOLDER, app_link)
        return message

    def _app_link(self, experience_id: str) -> Optional[str]:
        try:
            tenant = self.tenants.get_tenant(experience_id)
            if tenant is None:
                logger.warning("App link skipped: tenant not found", extra={"context": {"experience_id": experience_id}})
                return None
            return self.app_links.generate(tenant.platform_experience_id, tenant.platform_company_id, tenant.name)
        except Exception as e:
            logger.warning(f"App link generation failed: {e}", extra={"context": {"experience_id": experience_id}})
            return None
