# /gottadoit/config/default_flow.py

# Onboarding flow published for the default organization when nothing has been
# stored yet. It mirrors the six onboarding modules of the frontend and starts at
# "welcome-1", the entry node every new progress record points to.

def _card(node_id, title, content, actions, buttons, static=None):
    card = {
        "id": node_id,
        "title": title,
        "type": "card",
        "content": content,
        "actions": actions,
        "buttons": buttons,
    }
    if static is not None:
        card["static"] = static
    return card


def _next(action_id, target):
    return {"id": action_id, "type": "goto", "target": target}


DEFAULT_FLOW = {
    "id": "onboarding",
    "title": "Employee Onboarding",
    "type": "flow",
    "children": [
        {
            "id": "welcome",
            "title": "Welcome & Introduction",
            "type": "flow",
            "children": [
                _card(
                    "welcome-1", "Welcome aboard!",
                    "Get started with your onboarding journey. It takes about 45 minutes in total.",
                    [_next("next", "policies-1")],
                    [{"label": "Let's go", "actionId": "next"}],
                    static={"estimatedTime": "5 min"},
                ),
            ],
        },
        {
            "id": "policies",
            "title": "Company Policies",
            "type": "flow",
            "children": [
                _card(
                    "policies-1", "Employee Handbook",
                    "Read the handbook, code of conduct and company guidelines.",
                    [
                        {"id": "handbook", "type": "download", "target": "https://files.gottadoitnow.app/onboarding/employee-handbook.pdf"},
                        {"id": "ack", "type": "acknowledge"},
                        _next("next", "values-1"),
                    ],
                    [
                        {"label": "Download handbook", "actionId": "handbook"},
                        {"label": "I have read the handbook", "actionId": "ack"},
                        {"label": "Next", "actionId": "next"},
                    ],
                    static={"estimatedTime": "15 min"},
                ),
            ],
        },
        {
            "id": "values",
            "title": "Company Values",
            "type": "flow",
            "children": [
                _card(
                    "values-1", "Our mission, vision and values",
                    "Learn what we stand for and how we work together.",
                    [_next("next", "team-1")],
                    [{"label": "Next", "actionId": "next"}],
                    static={"estimatedTime": "10 min"},
                ),
            ],
        },
        {
            "id": "team",
            "title": "Meet Your Team",
            "type": "flow",
            "children": [
                _card(
                    "team-1", "Your colleagues",
                    "Get to know your colleagues and the team structure. Schedule 1:1s with key team members.",
                    [_next("next", "benefits-1")],
                    [{"label": "Next", "actionId": "next"}],
                    static={"estimatedTime": "8 min"},
                ),
            ],
        },
        {
            "id": "benefits",
            "title": "Benefits & Perks",
            "type": "flow",
            "children": [
                _card(
                    "benefits-1", "Benefits package",
                    "Explore your benefits package and company perks, then complete benefits enrollment.",
                    [_next("next", "checklist-1")],
                    [{"label": "Next", "actionId": "next"}],
                    static={"estimatedTime": "12 min"},
                ),
            ],
        },
        {
            "id": "checklist",
            "title": "Onboarding Checklist",
            "type": "flow",
            "children": [
                _card(
                    "checklist-1", "Final checklist",
                    "Employee ID, IT equipment, email setup, direct deposit, emergency contacts and tax forms.",
                    [{"id": "done", "type": "acknowledge"}],
                    [{"label": "I'm done", "actionId": "done"}],
                    static={"estimatedTime": "5 min"},
                ),
            ],
        },
    ],
}
