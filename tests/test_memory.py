"""Tests for per-chat conversation memory."""

from .fakes import FakeClock


def _memory(**kwargs):
    from lardigital.domain.memory import ConversationMemory

    clock = FakeClock()
    return ConversationMemory(clock=clock, **kwargs), clock


class TestConversationMemory:
    def test_render_labels_speakers(self):
        memory, _ = _memory()

        memory.append("chat", "user", "cheguei", author="Maria")
        memory.append("chat", "bot", "Registrar entrada às 08:30?")

        assert memory.render("chat") == "Maria: cheguei\nAssistente: Registrar entrada às 08:30?"

    def test_keeps_last_entries_only(self):
        memory, _ = _memory(max_entries=3)

        for i in range(5):
            memory.append("chat", "user", f"msg {i}")

        assert [entry.text for entry in memory.recent("chat")] == ["msg 2", "msg 3", "msg 4"]

    def test_old_entries_fall_out_of_window(self):
        memory, clock = _memory()
        memory.append("chat", "user", "antiga")

        clock.advance(minutes=11)
        memory.append("chat", "user", "nova")

        assert [entry.text for entry in memory.recent("chat")] == ["nova"]

    def test_empty_text_is_ignored(self):
        memory, _ = _memory()

        memory.append("chat", "user", "")

        assert memory.recent("chat") == []
        assert memory.render("unknown") == ""

    def test_sweep_evicts_idle_chats(self):
        memory, clock = _memory()
        memory.append("idle", "user", "oi")

        clock.advance(minutes=11)
        memory.append("active", "user", "oi de novo")

        assert len(memory) == 1
        assert memory.recent("idle") == []

    def test_chats_are_isolated(self):
        memory, _ = _memory()

        memory.append("a", "user", "um")
        memory.append("b", "user", "dois")

        assert memory.render("a") == "Usuário: um"
