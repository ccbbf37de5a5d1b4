import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional
from unittest.mock import Mock

import pytest

from funnelchat.services.analytics_service import InterestTracker
from funnelchat.services.conversation_service import ConversationEngine
from funnelchat.services.errors import StorageError
from funnelchat.services.escalation_service import InMemoryEscalationTracker
from funnelchat.services.funnel_graph import FunnelGraph
from funnelchat.services.link_resolver import LinkResolver
from funnelchat.services.storage.base import (
    ConversationRecord,
    ConversationStore,
    InteractionLog,
    MessageLog,
    MessageRecord,
    ResourceCatalog,
    ResourceRecord,
    TenantDirectory,
    TenantRecord,
)

EXPERIENCE_ID = "11111111-1111-1111-1111-111111111111"
OTHER_EXPERIENCE_ID = "22222222-2222-2222-2222-222222222222"
FUNNEL_ID = "33333333-3333-3333-3333-333333333333"
USER_ID = "user_abc"


def sample_flow() -> dict:
    return {
        "startBlockId": "start",
        "stages": [
            {"name": "WELCOME", "blockIds": ["start", "info"]},
            {"name": "VALUE_DELIVERY", "blockIds": ["value_1"]},
            {"name": "PAIN_POINT_QUALIFICATION", "blockIds": ["pain_1"]},
            {"name": "OFFER", "blockIds": ["offer_1"]},
            {"name": "EXPERIENCE_QUALIFICATION", "blockIds": ["exp_1", "exp_2"]},
            {"name": "FOLLOW_UP", "blockIds": []},
        ],
        "blocks": {
            "start": {
                "message": "Welcome! What brings you here?",
                "options": [
                    {"text": "Tell me more", "nextBlockId": "info"},
                    {"text": "Show me the value", "nextBlockId": "value_1"},
                ],
            },
            "info": {
                "message": "Here is more info.",
                "options": [
                    {"text": "Continue", "nextBlockId": "value_1"},
                    {"text": "Back to start", "nextBlockId": "start"},
                    {"text": "I'm done"},
                ],
            },
            "value_1": {
                "message": "Here is some value.",
                "options": [
                    {"text": "What's next", "nextBlockId": "pain_1"},
                    {"text": "Go back", "nextBlockId": "start"},
                ],
            },
            "pain_1": {
                "message": "What is your biggest struggle?",
                "options": [{"text": "Getting customers", "nextBlockId": "offer_1"}],
            },
            "offer_1": {
                "message": "Grab this guide: [LINK]",
                "resourceName": "Free Guide",
                "options": [{"text": "Thanks", "nextBlockId": "exp_1"}],
            },
            "exp_1": {
                "message": "How experienced are you?",
                "options": [{"text": "Beginner", "nextBlockId": "exp_2"}],
            },
            "exp_2": {"message": "", "options": []},
        },
    }


class FakeDatabase:
    """Shared in-memory state with commit/rollback snapshots."""

    def __init__(self):
        self.conversations: dict[str, ConversationRecord] = {}
        self.funnels: dict[tuple[str, str], tuple[Any, bool]] = {}
        self.messages: list[MessageRecord] = []
        self.interactions: list[dict] = []
        self.resources: dict[tuple[str, str], ResourceRecord] = {}
        self.tenants: dict[str, TenantRecord] = {}
        self.commits = 0
        self.rollbacks = 0
        self.fail_on: set[str] = set()
        self._snapshot = self._capture()

    def _capture(self):
        return dict(self.conversations), list(self.messages), list(self.interactions)

    def check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise StorageError(f"{operation} failed")

    def commit(self) -> None:
        self.check("commit")
        self.commits += 1
        self._snapshot = self._capture()

    def rollback(self) -> None:
        self.rollbacks += 1
        conversations, messages, interactions = self._snapshot
        self.conversations = dict(conversations)
        self.messages = list(messages)
        self.interactions = list(interactions)

    def add_funnel(self, flow: Any, funnel_id: str = FUNNEL_ID, experience_id: str = EXPERIENCE_ID, deployed=True):
        self.funnels[(funnel_id, experience_id)] = (flow, deployed)

    def add_conversation(
        self,
        current_block_id: Optional[str] = "start",
        status: str = "active",
        experience_id: str = EXPERIENCE_ID,
        funnel_id: str = FUNNEL_ID,
        external_user_id: str = USER_ID,
        phase2_start_time: Optional[datetime] = None,
    ) -> ConversationRecord:
        now = datetime.now(timezone.utc)
        record = ConversationRecord(
            id=str(uuid.uuid4()),
            experience_id=experience_id,
            funnel_id=funnel_id,
            external_user_id=external_user_id,
            status=status,
            current_block_id=current_block_id,
            path=(current_block_id,) if current_block_id else (),
            phase2_start_time=phase2_start_time,
            created_at=now,
            updated_at=now,
        )
        self.conversations[record.id] = record
        self._snapshot = self._capture()
        return record

    def messages_for(self, conversation_id: str) -> list[MessageRecord]:
        return [m for m in self.messages if m.conversation_id == conversation_id]


class FakeConversationStore(ConversationStore, ResourceCatalog, TenantDirectory):
    def __init__(self, db: FakeDatabase):
        self.db = db

    def _require(self, conversation_id: str, experience_id: str) -> ConversationRecord:
        record = self.load(conversation_id, experience_id)
        assert record is not None
        return record

    def load(self, conversation_id, experience_id):
        self.db.check("load")
        record = self.db.conversations.get(conversation_id)
        if record is None or record.experience_id != experience_id:
            return None
        return record

    def find_active(self, external_user_id, experience_id):
        self.db.check("find_active")
        return [
            c
            for c in self.db.conversations.values()
            if c.experience_id == experience_id and c.external_user_id == external_user_id and c.status == "active"
        ]

    def create(self, experience_id, funnel_id, external_user_id, start_block_id):
        self.db.check("create")
        active = self.find_active(external_user_id, experience_id)
        assert not active, "only one active conversation per user and experience"
        now = datetime.now(timezone.utc)
        record = ConversationRecord(
            id=str(uuid.uuid4()),
            experience_id=experience_id,
            funnel_id=funnel_id,
            external_user_id=external_user_id,
            status="active",
            current_block_id=start_block_id,
            path=(start_block_id,),
            created_at=now,
            updated_at=now,
        )
        self.db.conversations[record.id] = record
        return record

    def update_block_and_path(self, conversation_id, experience_id, block_id, append_to_path=None, phase2_start_time=None):
        self.db.check("update_block_and_path")
        record = self._require(conversation_id, experience_id)
        path = record.path + (append_to_path,) if append_to_path is not None else record.path
        stamp = record.phase2_start_time
        if phase2_start_time is not None and stamp is None:
            stamp = phase2_start_time
        updated = replace(
            record,
            current_block_id=block_id,
            path=path,
            phase2_start_time=stamp,
            updated_at=datetime.now(timezone.utc),
        )
        self.db.conversations[conversation_id] = updated
        return updated

    def update_status(self, conversation_id, experience_id, status):
        self.db.check("update_status")
        record = self._require(conversation_id, experience_id)
        updated = replace(record, status=status, updated_at=datetime.now(timezone.utc))
        self.db.conversations[conversation_id] = updated
        return updated

    def load_funnel(self, funnel_id, experience_id, deployed_only=False):
        self.db.check("load_funnel")
        entry = self.db.funnels.get((funnel_id, experience_id))
        if entry is None:
            return None
        flow, deployed = entry
        if deployed_only and not deployed:
            return None
        return flow

    def list_messages(self, conversation_id, experience_id):
        if self.load(conversation_id, experience_id) is None:
            return []
        return self.db.messages_for(conversation_id)

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()

    def find_by_name_and_tenant(self, name, experience_id):
        self.db.check("find_by_name_and_tenant")
        return self.db.resources.get((experience_id, name))

    def get_tenant(self, experience_id):
        self.db.check("get_tenant")
        return self.db.tenants.get(experience_id)


class FakeMessageLog(MessageLog):
    def __init__(self, db: FakeDatabase):
        self.db = db

    def append(self, conversation_id, role, content, metadata=None):
        self.db.check(f"append_{role}_message")
        message_id = str(uuid.uuid4())
        self.db.messages.append(
            MessageRecord(
                id=message_id,
                conversation_id=conversation_id,
                role=role,
                content=content,
                metadata=metadata or {},
                created_at=datetime.now(timezone.utc),
            )
        )
        return message_id


class FakeInteractionLog(InteractionLog):
    def __init__(self, db: FakeDatabase):
        self.db = db

    def append(self, conversation_id, block_id, option_text, next_block_id, metadata=None):
        self.db.check("append_interaction")
        self.db.interactions.append(
            {
                "conversation_id": conversation_id,
                "block_id": block_id,
                "option_text": option_text,
                "next_block_id": next_block_id,
                "metadata": metadata or {},
            }
        )


class FakeInterestTracker(InterestTracker):
    def __init__(self):
        self.starts: list[tuple[str, str]] = []
        self.interest: list[tuple[str, str]] = []

    def record_start(self, experience_id, funnel_id):
        self.starts.append((experience_id, funnel_id))

    def record_interest(self, experience_id, funnel_id):
        self.interest.append((experience_id, funnel_id))


def run_inline(fn, *args, **kwargs):
    """Synchronous stand-in for run_in_background."""
    try:
        fn(*args, **kwargs)
    except Exception:
        pass


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


@pytest.fixture
def flow():
    return sample_flow()


@pytest.fixture
def graph(flow):
    return FunnelGraph.from_flow(flow)


@pytest.fixture
def fake_db(flow):
    db = FakeDatabase()
    db.add_funnel(flow)
    db.tenants[EXPERIENCE_ID] = TenantRecord(
        id=EXPERIENCE_ID,
        platform_experience_id="exp_AbC123",
        platform_company_id="biz_999",
        name="Growth Academy",
    )
    return db


@pytest.fixture
def store(fake_db):
    return FakeConversationStore(fake_db)


@pytest.fixture
def platform():
    client = Mock()
    client.get_experience_app_id.return_value = "app_123"
    return client


@pytest.fixture
def app_links():
    generator = Mock()
    generator.generate.return_value = "https://whop.com/growth/growth-academy-AbC123/app/"
    return generator


@pytest.fixture
def link_resolver(store, platform, app_links):
    return LinkResolver(
        resources=store,
        tenants=store,
        platform=platform,
        app_links=app_links,
        app_base_url="https://chat.example.com",
    )


@pytest.fixture
def escalation():
    return InMemoryEscalationTracker()


@pytest.fixture
def interest_tracker():
    return FakeInterestTracker()


@pytest.fixture
def engine(fake_db, store, link_resolver, escalation, interest_tracker):
    return ConversationEngine(
        store=store,
        messages=FakeMessageLog(fake_db),
        interactions=FakeInteractionLog(fake_db),
        link_resolver=link_resolver,
        escalation=escalation,
        interest_tracker=interest_tracker,
        dispatch=run_inline,
    )
