import logging

from applications.gigs.models import Gig, GigCategory
from applications.user.models import User

logger = logging.getLogger(__name__)


def _package(title: str, description: str, price: int, delivery_time: int, revisions: int, features: list[str]):
    return {
        "title": title,
        "description": description,
        "price": price,
        "delivery_time": delivery_time,
        "revisions": revisions,
        "features": features,
    }


GIGS = {
    "john_dev": {
        "title": "I will create a modern responsive website using React and FastAPI",
        "description": "A professional, fully responsive website built with React on the frontend and FastAPI on the backend.",
        "category": GigCategory.WEB_DEVELOPMENT,
        "subcategory": "Full Stack Development",
        "search_tags": ["react", "fastapi", "responsive"],
        "pricing": {
            "basic": _package("Basic Website", "Simple 3-page website", 150, 5, 2, ["Responsive Design", "3 Pages"]),
            "standard": _package("Standard Website", "Website with CMS", 300, 7, 3, ["Everything in Basic", "CMS"]),
            "premium": _package("Premium Website", "Complete web application", 500, 10, 5, ["Payments", "Admin"]),
        },
    },
    "sarah_design": {
        "title": "I will design a unique and professional logo for your brand",
        "description": "Custom logo design with unlimited concepts until you are satisfied.",
        "category": GigCategory.GRAPHIC_DESIGN,
        "subcategory": "Logo Design",
        "search_tags": ["logo", "branding", "design"],
        "pricing": {
            "basic": _package("Basic Logo", "One logo concept", 50, 3, 2, ["1 Concept", "PNG"]),
            "standard": _package("Standard Logo", "Three logo concepts", 100, 5, 3, ["3 Concepts", "Vector"]),
        },
    },
    "emma_writer": {
        "title": "I will write SEO optimized blog posts and articles",
        "description": "Engaging, well-researched articles optimized for search engines.",
        "category": GigCategory.WRITING_TRANSLATION,
        "subcategory": "Articles & Blog Posts",
        "search_tags": ["seo", "blog", "writing"],
        "pricing": {
            "basic": _package("500 Words", "One 500-word article", 25, 2, 1, ["SEO Keywords"]),
        },
    },
}


async def seed_gigs() -> list[Gig]:
    gigs = []
    for username, data in GIGS.items():
        freelancer = await User.get_or_none(username=username)
        if freelancer is None:
            logger.warning("Freelancer %s missing, seed users first", username)
            continue
        gig, created = await Gig.get_or_create(title=data["title"], freelancer=freelancer, defaults=data)
        if created:
            logger.info("Seeded gig %s", gig.title)
        gigs.append(gig)
    return gigs
