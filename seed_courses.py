#!/usr/bin/env python3
"""
Default training program catalog.

Inserted automatically on first start when the course table is empty; run this
file directly to reseed a database that was emptied by hand.
"""
import logging
from models import db, Course

DEFAULT_COURSES = [
    {
        'title': 'Data Analytics with Excel and Power BI',
        'description': '<p>Clean, model and visualize business data. Build interactive dashboards '
                       'that answer real management questions.</p>',
        'instructor': 'Kwame Mensah',
        'duration': '6 Weeks',
        'level': 'Beginner',
        'price': 1500.0,
        'tags': ['Excel', 'Power BI', 'Dashboards'],
        'image': 'https://images.unsplash.com/photo-1551288049-bebda4e38f71',
    },
    {
        'title': 'Python for Data Science',
        'description': '<p>From Python basics to pandas, NumPy and matplotlib. Every week ends with '
                       'a hands-on analysis of a public dataset.</p>',
        'instructor': 'Ama Owusu',
        'duration': '8 Weeks',
        'level': 'Intermediate',
        'price': 2200.0,
        'tags': ['Python', 'pandas', 'Data Science'],
        'image': 'https://images.unsplash.com/photo-1526379095098-d400fd0bf935',
    },
    {
        'title': 'Machine Learning in Practice',
        'description': '<p>Supervised and unsupervised learning with scikit-learn, model evaluation '
                       'and deployment of a small prediction service.</p>',
        'instructor': 'Dr. Yaw Boateng',
        'duration': '10 Weeks',
        'level': 'Advanced',
        'price': 3500.0,
        'tags': ['Machine Learning', 'AI', 'scikit-learn'],
        'image': 'https://images.unsplash.com/photo-1555949963-aa79dcee981c',
    },
    {
        'title': 'SQL for Business Intelligence',
        'description': '<p>Query relational databases confidently: joins, window functions and '
                       'reporting views for BI teams.</p>',
        'instructor': 'Efua Asante',
        'duration': '4 Weeks',
        'level': 'Beginner',
        'price': 1200.0,
        'tags': ['SQL', 'Business Intelligence'],
        'image': 'https://images.unsplash.com/photo-1544383835-bda2bc66a55d',
    },
]


def seed_default_courses():
    """Insert the default catalog when no course exists. Returns the number inserted."""
    if Course.query.count() > 0:
        return 0
    for data in DEFAULT_COURSES:
        data = dict(data)
        tags = data.pop('tags')
        course = Course(**data)
        course.tags = tags
        db.session.add(course)
    db.session.commit()
    logging.info('[SEED] Inserted %d default courses', len(DEFAULT_COURSES))
    return len(DEFAULT_COURSES)


if __name__ == '__main__':
    from app import app
    with app.app_context():
        count = seed_default_courses()
        print(f"Seeded {count} course(s)" if count else "Catalog already populated, nothing to do")
