# app/intake/stages.py
from enum import Enum
from typing import Dict, List


class IntakeTopic(str, Enum):
    IDENTITY = "identity"
    CHIEF_COMPLAINT = "chief_complaint"
    SYMPTOM_FOLLOW_UP = "symptom_follow_up"
    PAIN_INTENSITY = "pain_intensity"
    PAIN_CHARACTER = "pain_character"
    MEDICATION = "medication"
    DURATION = "duration"
    CAUSE_AND_PRIOR_EPISODES = "cause_and_prior_episodes"
    SURGERIES_AND_CHRONIC = "surgeries_and_chronic"
    FAMILY_AND_TRANSFUSION = "family_and_transfusion"
    ADDITIONAL_INFO = "additional_info"


# Order in which the assistant is asked to cover the topics.
TOPIC_SEQUENCE: List[IntakeTopic] = [
    IntakeTopic.IDENTITY,
    IntakeTopic.CHIEF_COMPLAINT,
    IntakeTopic.SYMPTOM_FOLLOW_UP,
    IntakeTopic.PAIN_INTENSITY,
    IntakeTopic.PAIN_CHARACTER,
    IntakeTopic.MEDICATION,
    IntakeTopic.DURATION,
    IntakeTopic.CAUSE_AND_PRIOR_EPISODES,
    IntakeTopic.SURGERIES_AND_CHRONIC,
    IntakeTopic.FAMILY_AND_TRANSFUSION,
    IntakeTopic.ADDITIONAL_INFO,
]

TOPIC_INSTRUCTIONS: Dict[IntakeTopic, str] = {
    IntakeTopic.IDENTITY: (
        "Greet the patient and ask only for their personal details: "
        "name, age, gender, occupation and city/state."
    ),
    IntakeTopic.CHIEF_COMPLAINT: "Ask only about the main symptom they are experiencing.",
    IntakeTopic.SYMPTOM_FOLLOW_UP: (
        "Based on the reported symptom, ask specific follow-up questions, one at a time."
    ),
    IntakeTopic.PAIN_INTENSITY: "When appropriate, ask them to rate the pain from 1 to 10.",
    IntakeTopic.PAIN_CHARACTER: (
        "In a separate question, ask about the type of pain (e.g. throbbing, sharp) if applicable."
    ),
    IntakeTopic.MEDICATION: (
        "Ask about any medication they take, and for symptom-related medication "
        "whether it helped."
    ),
    IntakeTopic.DURATION: (
        "Ask how long the symptoms have lasted and whether they are getting worse, "
        "better or staying the same."
    ),
    IntakeTopic.CAUSE_AND_PRIOR_EPISODES: (
        "Ask what they think the cause might be and whether they have had similar "
        "episodes before."
    ),
    IntakeTopic.SURGERIES_AND_CHRONIC: (
        "Ask about past surgeries and chronic conditions such as high blood pressure, "
        "diabetes or cholesterol."
    ),
    IntakeTopic.FAMILY_AND_TRANSFUSION: (
        "Ask about family history of chronic disease and any recent blood transfusion."
    ),
    IntakeTopic.ADDITIONAL_INFO: "Finally, ask for any additional information they want to share.",
}
