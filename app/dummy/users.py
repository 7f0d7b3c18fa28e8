import logging

from applications.user.models import User, UserRole

logger = logging.getLogger(__name__)

DEFAULT_PASSWORD = "password123"

USERS = [
    {
        "username": "john_dev",
        "email": "john@example.com",
        "role": UserRole.FREELANCER,
        "full_name": "John Smith",
        "description": "Full-stack developer with 5+ years of experience in React, Node.js and Python.",
        "skills": ["React", "Node.js", "Python", "TypeScript"],
        "country": "United States",
    },
    {
        "username": "sarah_design",
        "email": "sarah@example.com",
        "role": UserRole.FREELANCER,
        "full_name": "Sarah Johnson",
        "description": "Graphic designer specializing in brand identity and web design.",
        "skills": ["Photoshop", "Illustrator", "Figma", "Brand Design"],
        "country": "Canada",
    },
    {
        "username": "emma_writer",
        "email": "emma@example.com",
        "role": UserRole.FREELANCER,
        "full_name": "Emma Davis",
        "description": "Content writer and copywriter with expertise in SEO and marketing.",
        "skills": ["Content Writing", "Copywriting", "SEO"],
        "country": "Australia",
    },
    {
        "username": "mike_client",
        "email": "mike@example.com",
        "role": UserRole.CLIENT,
        "full_name": "Mike Wilson",
        "description": "Startup founder looking for quality services.",
        "country": "United Kingdom",
    },
]


async def seed_users() -> list[User]:
    users = []
    for data in USERS:
        user, created = await User.get_or_create(
            email=data["email"],
            defaults={**data, "password": DEFAULT_PASSWORD, "is_verified": True},
        )
        if created:
            logger.info("Seeded user %s (%s)", user.username, user.role.value)
        users.append(user)
    return users
