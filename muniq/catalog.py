from __future__ import annotations
from typing import List, Optional, TypedDict


class CourseItem(TypedDict):
    id: str
    name: str
    price: int  # rupees
    original_price: int
    description: str


COURSE_CATALOG: List[CourseItem] = [
    {
        "id": "mun_course",
        "name": "MUN Mastery Course",
        "price": 999,
        "original_price": 1500,
        "description": "Research, speeches, caucusing and resolution "
                       "writing for Model United Nations.",
    },
    {
        "id": "ip_course",
        "name": "IP Mastery Course",
        "price": 699,
        "original_price": 999,
        "description": "International Press: reporting, photography and "
                       "editorials at MUN conferences.",
    },
    {
        "id": "strategic_call",
        "name": "Strategic 1-1 Call",
        "price": 349,
        "original_price": 500,
        "description": "A 60 minute personal session to plan your next "
                       "conference.",
    },
]

WORKSHOP_SLOTS = ("2-4pm", "4-6pm")


def get_course(course_id: Optional[str]) -> Optional[CourseItem]:
    for course in COURSE_CATALOG:
        if course["id"] == course_id:
            return course
    return None
