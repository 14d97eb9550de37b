"""chip8-vm Interactive Demo.

A Gradio web interface for running and visualizing CHIP-8 programs.

Usage:
    cd /path/to/chip8-vm
    python demo/gradio_app.py

Features:
    - Enter a program as hex words or pick an example
    - Hold keys down for the run and seed the random source
    - See the framebuffer, the disassembly and a step-by-step trace
"""

import random
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import gradio as gr
from chip8_vm import Chip8, Chip8Error
from chip8_vm.decode import disassemble
from chip8_vm.screen import render_text
from chip8_vm.state import PROGRAM_START, program_from_hex


# =============================================================================
# Example Programs
# =============================================================================

EXAMPLE_PROGRAMS = {
    "Add registers": """6105  ; LD V1, 5
6203  ; LD V2, 3
8124  ; ADD V1, V2  -> V1 = 8, VF = 0""",

    "Draw hex digits": """6000  ; LD V0, 0      x
6100  ; LD V1, 0      y
620A  ; LD V2, 0x0A
F229  ; LD F, V2      I = glyph A
D015  ; DRW V0, V1, 5
7005  ; ADD V0, 5
620B  ; LD V2, 0x0B
F229  ; LD F, V2
D015  ; DRW V0, V1, 5""",

    "BCD of 234": """60EA  ; LD V0, 234
A300  ; LD I, 0x300
F033  ; LD B, V0
F265  ; LD V2, [I]    -> V0=2 V1=3 V2=4""",

    "Wait for key": """F00A  ; LD V0, K      blocks until a key is held
F029  ; LD F, V0
6105  ; LD V1, 5
6205  ; LD V2, 5
D125  ; DRW V1, V2, 5""",

    "Custom": ""
}

KEY_CHOICES = [f"{k:X}" for k in range(16)]


def strip_comments(source: str) -> str:
    """Drop ';' comments so only hex words remain."""
    return "\n".join(line.split(";", 1)[0] for line in source.splitlines())


# =============================================================================
# Execution Functions
# =============================================================================

def run_program(program: str, max_steps: int, seed: int, held_keys: list) -> tuple:
    """Execute a hex program and return results.

    Args:
        program: Hex words, ';' starts a comment
        max_steps: Maximum steps to execute
        seed: Seed for the RND instruction
        held_keys: Hex key names held down for the whole run

    Returns:
        Tuple of (summary_text, screen_text, trace_text, registers_text, listing_text)
    """
    if not program.strip():
        return "Error: No program provided", "", "", "", ""

    try:
        rng = random.Random(int(seed)) if seed is not None else random.Random()
        cpu = Chip8(rng=rng, trace_enabled=True)
        cpu.load_program(program_from_hex(strip_comments(program)))
    except ValueError as e:
        return f"Load error: {e}", "", "", "", ""

    for key in held_keys or []:
        cpu.set_key(int(key, 16), True)

    try:
        cpu.run_for(int(max_steps))
    except Chip8Error as e:
        error_msg = str(e)
    else:
        error_msg = None

    # Format summary
    summary = cpu.get_summary()
    summary_lines = [
        "EXECUTION SUMMARY",
        "=" * 40,
        f"Cycles: {summary['cycles']}",
        f"Halted: {'Yes' if summary['halted'] else 'No'}",
        f"Still runnable: {'Yes' if summary['can_continue'] else 'No'}",
        f"PC: {summary['pc']:#05x}",
    ]
    if error_msg:
        summary_lines.append(f"\nRuntime: {error_msg}")
    summary_text = "\n".join(summary_lines)

    screen_text = render_text(cpu.get_pixels(), on="█", off="·")

    # Format trace
    trace = cpu.get_trace()
    trace_lines = [
        "EXECUTION TRACE",
        "=" * 60,
    ]
    for entry in trace[:100]:  # Limit to 100 entries
        trace_lines.append(f"\n--- Cycle {entry.cycle} (PC={entry.address:#05x}) ---")
        trace_lines.append(f"Word:        {entry.instruction:04X}")
        trace_lines.append(f"Decoded:     {entry.mnemonic}")
        trace_lines.append(f"Key:         {entry.decode_result.key} {entry.decode_result.params}")

        # Show register changes
        pre_regs = entry.pre_state['registers']
        post_regs = entry.post_state['registers']
        changes = []
        for reg in pre_regs:
            if pre_regs[reg] != post_regs[reg]:
                changes.append(f"{reg}: {pre_regs[reg]} -> {post_regs[reg]}")
        if changes:
            trace_lines.append(f"Changes:     {', '.join(changes)}")
        if entry.error:
            trace_lines.append(f"Error:       {entry.error}")

    if len(trace) > 100:
        trace_lines.append(f"\n... ({len(trace) - 100} more entries)")

    trace_text = "\n".join(trace_lines)

    # Format registers
    regs = cpu.dump_registers()
    reg_lines = [
        "FINAL REGISTERS",
        "=" * 30,
    ]
    for reg, value in regs.items():
        marker = " *" if value != 0 else ""
        reg_lines.append(f"  {reg}: {value:>5}  ({value:#04x}){marker}")

    reg_lines.append("")
    reg_lines.append(f"  I:  {summary['index_register']:#05x}")
    reg_lines.append(f"  DT: {summary['timers']['delay']}")
    reg_lines.append(f"  ST: {summary['timers']['sound']}")

    registers_text = "\n".join(reg_lines)

    listing = disassemble(cpu.state.memory, PROGRAM_START, cpu.state.program_size)
    listing_text = "\n".join(str(entry) for entry in listing)

    return summary_text, screen_text, trace_text, registers_text, listing_text


def load_example(example_name: str) -> str:
    """Load an example program."""
    return EXAMPLE_PROGRAMS.get(example_name, "")


# =============================================================================
# Gradio Interface
# =============================================================================

def create_demo():
    """Create and return the Gradio demo interface."""

    with gr.Blocks(title="chip8-vm Demo", theme=gr.themes.Soft()) as demo:
        gr.Markdown("""
        # chip8-vm: CHIP-8 Virtual Machine

        Runs programs for the classic 8-bit CHIP-8 machine: 4 KiB memory,
        16 byte registers, two timers, a 64x32 monochrome screen and a hex keypad.

        **Pipeline**: `fetch -> decode -> key -> registry execute -> timers`
        """)

        with gr.Row():
            with gr.Column(scale=2):
                gr.Markdown("### Program")

                example_dropdown = gr.Dropdown(
                    choices=list(EXAMPLE_PROGRAMS.keys()),
                    value="Draw hex digits",
                    label="Load Example"
                )

                program_input = gr.Textbox(
                    value=EXAMPLE_PROGRAMS["Draw hex digits"],
                    label="Hex Words (loaded at 0x200)",
                    lines=15,
                    placeholder="6105 6203 8124 ..."
                )

                gr.Markdown("### Settings")

                with gr.Row():
                    max_steps = gr.Slider(
                        minimum=1,
                        maximum=100000,
                        value=1000,
                        step=1,
                        label="Max Steps"
                    )
                    seed = gr.Number(
                        value=0,
                        precision=0,
                        label="RND Seed"
                    )

                held_keys = gr.CheckboxGroup(
                    choices=KEY_CHOICES,
                    label="Keys Held"
                )

                run_button = gr.Button("Run Program", variant="primary")

            with gr.Column(scale=3):
                screen_output = gr.Textbox(
                    label="Screen",
                    lines=34,
                    interactive=False
                )
                with gr.Row():
                    summary_output = gr.Textbox(
                        label="Summary",
                        lines=10,
                        interactive=False
                    )
                    registers_output = gr.Textbox(
                        label="Final Registers",
                        lines=10,
                        interactive=False
                    )

        with gr.Row():
            listing_output = gr.Textbox(
                label="Disassembly",
                lines=15,
                interactive=False
            )
            trace_output = gr.Textbox(
                label="Execution Trace",
                lines=15,
                interactive=False
            )

        # ISA Reference
        with gr.Accordion("Instruction Reference", open=False):
            gr.Markdown("""
            | Word | Mnemonic | Effect |
            |------|----------|--------|
            | `00E0` | `CLS` | Clear screen |
            | `00EE` | `RET` | Return from subroutine |
            | `1nnn` | `JP nnn` | Jump |
            | `2nnn` | `CALL nnn` | Call subroutine |
            | `3xnn` / `4xnn` | `SE` / `SNE Vx, nn` | Skip if (not) equal |
            | `5xy0` / `9xy0` | `SE` / `SNE Vx, Vy` | Skip if registers (not) equal |
            | `6xnn` / `7xnn` | `LD` / `ADD Vx, nn` | Load / add immediate (no VF) |
            | `8xy0`-`8xy3` | `LD OR AND XOR` | Register ops |
            | `8xy4` | `ADD Vx, Vy` | VF = carry |
            | `8xy5` / `8xy7` | `SUB` / `SUBN` | VF = no borrow |
            | `8xy6` / `8xyE` | `SHR` / `SHL` | VF = bit shifted out |
            | `Annn` / `Bnnn` | `LD I` / `JP V0` | Index, indexed jump |
            | `Cxnn` | `RND Vx, nn` | Random AND nn |
            | `Dxyn` | `DRW Vx, Vy, n` | XOR sprite, VF = collision |
            | `Ex9E` / `ExA1` | `SKP` / `SKNP` | Skip on key |
            | `Fx07 Fx0A Fx15 Fx18` | `LD Vx,DT` `LD Vx,K` `LD DT` `LD ST` | Timers, key wait |
            | `Fx1E Fx29 Fx33` | `ADD I` `LD F` `LD B` | Index add, font, BCD |
            | `Fx55` / `Fx65` | `LD [I]` / `LD Vx,[I]` | Register dump / load, I += x+1 |
            """)

        # Event handlers
        example_dropdown.change(
            fn=load_example,
            inputs=[example_dropdown],
            outputs=[program_input]
        )

        run_button.click(
            fn=run_program,
            inputs=[program_input, max_steps, seed, held_keys],
            outputs=[summary_output, screen_output, trace_output, registers_output, listing_output]
        )

    return demo


# =============================================================================
# Main
# =============================================================================

if __name__ == "__main__":
    demo = create_demo()
    demo.launch(
        share=False,
        server_name="0.0.0.0",
        server_port=7861,
        show_error=True
    )
