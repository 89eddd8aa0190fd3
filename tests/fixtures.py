"""
Test Fixtures

Shared message samples for the Lifeline test suite, grouped by the crisis
tier the lexicon should place them in.
"""

SUPPORTIVE_SAMPLES = [
    "Thanks for listening tonight, it really helped",
    "I had a good day at work and went for a walk",
    "Looking forward to the weekend with my family",
]

DISTRESS_SAMPLES = [
    "I can't take anymore of this",
    "Everyone hates me and I feel like a burden to everyone",
    "I feel like a complete failure",
]

SELF_HARM_SAMPLES = [
    "I keep cutting myself when it gets bad",
    "I want to hurt myself again",
]

PLANNING_SAMPLES = [
    "I've started writing my suicide note",
    "I've been making final arrangements for my cat",
]

IMMEDIATE_SAMPLES = [
    "I have the pills in my hand right now",
    "The gun is loaded and I'm ready",
    "I'm ending it tonight, goodbye",
]

MULTILINGUAL_SAMPLES = {
    "es": "No sé que hacer, tengo las pastillas en la mano",
    "fr": "Je ne sais pas, j'ai les pilules et je vais mourir ce soir",
    "pt": "Não aguento mais, não sei o que fazer com a minha vida",
}

# Hedging, cultural and contradictory phrasing for oversight triggers
AMBIGUOUS_SAMPLE = "Maybe I might feel different tomorrow, I'm not sure"
CULTURAL_SAMPLE = "My religious family would never understand me"
CONTRADICTORY_SAMPLE = "I'm getting help but nothing works anymore"
UNUSUAL_IDEATION_SAMPLE = "The government is tracking everything I do"
