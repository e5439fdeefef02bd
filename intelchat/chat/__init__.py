"""Intel chat: a bounded tool-calling loop over the intelligence graph, plus session handling.

Entry points live in `intelchat.chat.service` (sessions + turns) and `intelchat.chat.runtime`
(a single turn without persistence).
"""
