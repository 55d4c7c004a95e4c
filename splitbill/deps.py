from splitbill.config import get_settings
from splitbill.db.repository import LedgerRepository
from splitbill.ledger.members import MemberResolver
from splitbill.ledger.state import SessionController
from splitbill.llm.oracle import ExtractionOracle

settings = get_settings()

repo = LedgerRepository(settings.db_path)
resolver = MemberResolver(repo)
controller = SessionController(repo)
oracle = ExtractionOracle(
    api_key=settings.openrouter_api_key,
    model=settings.llm_model,
    vision_model=settings.vision_model,
)
