"""Built-in prompt templates shipped with every installation."""
import logging
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from aicore.models.prompt_template import PromptTemplate
from aicore.services.template_engine import TemplateService

logger = logging.getLogger(__name__)

SYSTEM_TEMPLATES: List[Dict[str, Any]] = [
    {
        "name": "CRM Lead Qualification",
        "category": "crm",
        "description": "Analyze and qualify leads based on provided information",
        "template": (
            "Analyze the following lead information and provide a qualification score and recommendations:\n"
            "\n"
            "Lead Information:\n"
            "- Name: {{name}}\n"
            "- Company: {{company}}\n"
            "- Position: {{position}}\n"
            "- Email: {{email}}\n"
            "- Phone: {{phone}}\n"
            "- Source: {{source}}\n"
            "- Notes: {{notes}}\n"
            "\n"
            "Please provide:\n"
            "1. Qualification score (1-10)\n"
            "2. Key strengths\n"
            "3. Potential concerns\n"
            "4. Recommended next actions\n"
            "5. Priority level (High/Medium/Low)"
        ),
        "example_data": {
            "name": "John Smith",
            "company": "Tech Corp",
            "position": "CTO",
            "email": "john@techcorp.com",
            "phone": "+1234567890",
            "source": "Website",
            "notes": "Interested in AI solutions",
        },
        "tags": ["crm", "lead", "qualification", "sales"],
    },
    {
        "name": "Support Ticket Analysis",
        "category": "support",
        "description": "Analyze support tickets for priority, sentiment, and resolution suggestions",
        "template": (
            "Analyze the following support ticket and provide insights:\n"
            "\n"
            "Ticket Information:\n"
            "- Title: {{title}}\n"
            "- Description: {{description}}\n"
            "- Category: {{category}}\n"
            "- Customer: {{customer}}\n"
            "- Priority: {{priority}}\n"
            "\n"
            "Please provide:\n"
            "1. Sentiment analysis (Positive/Neutral/Negative)\n"
            "2. Urgency level (Low/Medium/High/Critical)\n"
            "3. Suggested category (if different)\n"
            "4. Estimated resolution time\n"
            "5. Recommended actions\n"
            "6. Similar issues or knowledge base articles"
        ),
        "example_data": {
            "title": "Login Issues",
            "description": "Cannot access my account after password reset",
            "category": "Authentication",
            "customer": "Jane Doe",
            "priority": "Medium",
        },
        "tags": ["support", "ticket", "analysis", "customer-service"],
    },
    {
        "name": "Financial Transaction Categorization",
        "category": "finance",
        "description": "Categorize and analyze financial transactions",
        "template": (
            "Analyze and categorize the following financial transaction:\n"
            "\n"
            "Transaction Details:\n"
            "- Description: {{description}}\n"
            "- Amount: {{amount}}\n"
            "- Vendor: {{vendor}}\n"
            "- Date: {{date}}\n"
            "- Account: {{account}}\n"
            "\n"
            "Please provide:\n"
            "1. Suggested category\n"
            "2. Transaction type (Income/Expense/Transfer)\n"
            "3. Business purpose classification\n"
            "4. Tax implications (if applicable)\n"
            "5. Potential duplicate detection\n"
            "6. Recommended tags or labels"
        ),
        "example_data": {
            "description": "Office supplies purchase",
            "amount": "150.00",
            "vendor": "Office Depot",
            "date": "2024-01-15",
            "account": "Business Checking",
        },
        "tags": ["finance", "transaction", "categorization", "accounting"],
    },
    {
        "name": "Content SEO Optimization",
        "category": "cms",
        "description": "Analyze and optimize content for SEO",
        "template": (
            "Analyze the following content for SEO optimization:\n"
            "\n"
            "Content Information:\n"
            "- Title: {{title}}\n"
            "- Content: {{content}}\n"
            "- Target Keywords: {{keywords}}\n"
            "- Meta Description: {{meta_description}}\n"
            "\n"
            "Please provide:\n"
            "1. SEO score (1-100)\n"
            "2. Title optimization suggestions\n"
            "3. Content structure improvements\n"
            "4. Keyword density analysis\n"
            "5. Meta description recommendations\n"
            "6. Internal linking suggestions\n"
            "7. Readability assessment"
        ),
        "example_data": {
            "title": "AI Solutions for Business",
            "content": "Artificial intelligence is transforming businesses...",
            "keywords": "AI, artificial intelligence, business automation",
            "meta_description": "Learn how AI can transform your business",
        },
        "tags": ["cms", "seo", "content", "optimization"],
    },
]


def seed_system_templates(db: Session) -> int:
    """Create any missing system templates. Returns how many were added.

    Existing rows are matched by name so re-running never duplicates them.
    """
    service = TemplateService(db)
    existing = {
        name
        for (name,) in db.query(PromptTemplate.name).filter(PromptTemplate.is_system.is_(True)).all()
    }

    created = 0
    for definition in SYSTEM_TEMPLATES:
        if definition["name"] in existing:
            continue
        service.create(owner_id=None, is_public=True, is_system=True, **definition)
        created += 1

    if created:
        logger.info(f"Seeded {created} system prompt templates")
    return created
