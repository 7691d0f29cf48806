import argparse
import datetime
import logging
import os

import pygame

from chip8 import C8Computer, MAX_ROM_SIZE, ROMTooLargeException

SCALE_FACTOR = 8
PIXEL_OFF = (0, 0, 0)
PIXEL_ON = (255, 255, 255)

# Tweak this per ROM - how many microseconds to wait before executing an instruction.  Smaller means more frequent
# instruction executions, which makes things faster.
INSTRUCTION_DELAY = 2000
DUMP_FILE = "debug.txt"


# The keyboard layout for the CHIP-8 assumes:
#   1 2 3 C
#   4 5 6 D
#   7 8 9 E
#   A 0 B F
#
# We map this to the following keys on our keyboard:
#   1 2 3 4
#   Q W E R
#   A S D F
#   Z X C V

KEYMAPPING = {
    pygame.K_1: 0x01,
    pygame.K_2: 0x02,
    pygame.K_3: 0x03,
    pygame.K_4: 0x0C,
    pygame.K_q: 0x04,
    pygame.K_w: 0x05,
    pygame.K_e: 0x06,
    pygame.K_r: 0x0D,
    pygame.K_a: 0x07,
    pygame.K_s: 0x08,
    pygame.K_d: 0x09,
    pygame.K_f: 0x0E,
    pygame.K_z: 0x0A,
    pygame.K_x: 0x00,
    pygame.K_c: 0x0B,
    pygame.K_v: 0x0F
}

logger = logging.getLogger(__name__)


def read_rom(rom_file):
    # Size is checked here so a huge file is never read into memory in full
    size = os.path.getsize(rom_file)
    if size > MAX_ROM_SIZE:
        raise ROMTooLargeException("{} is {} bytes; at most {} fit in RAM".format(rom_file, size, MAX_ROM_SIZE))
    with open(rom_file, "rb") as infile:
        return infile.read()


def write_dump(c8, dump_file):
    with open(dump_file, "w") as outfile:
        outfile.write(c8.dump_state(include_ram=True))
    logger.info("Machine state written to %s", dump_file)


class C8Window:
    '''
    Rasterizes a C8Screen onto a pygame surface.  Each CHIP-8 pixel becomes a scale x scale square.
    '''

    def __init__(self, window, scale=SCALE_FACTOR):
        self.window = window
        self.scale = scale
        self.num_renders = 0
        self.render_time_ps = 0

    def render(self, screen):
        self.num_renders += 1
        start_time = datetime.datetime.now()
        self.window.fill(PIXEL_OFF)
        for y in range(screen.ysize):
            row = screen.rows[y]
            if not row:
                continue
            for x in range(screen.xsize):
                if screen.pixel(x, y):
                    self.window.fill(PIXEL_ON, pygame.Rect(x * self.scale, y * self.scale, self.scale, self.scale))
        pygame.display.flip()
        screen.needs_draw = False
        self.render_time_ps += (datetime.datetime.now() - start_time).total_seconds()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="CHIP-8 emulator")
    parser.add_argument("rom", help="Path to a CHIP-8 ROM image")
    parser.add_argument("--scale", type=int, default=SCALE_FACTOR, help="Window pixels per CHIP-8 pixel")
    parser.add_argument(
        "--instruction-delay",
        type=int,
        default=INSTRUCTION_DELAY,
        help="Microseconds between instructions; smaller runs faster",
    )
    parser.add_argument(
        "--original-quirks",
        action="store_true",
        help="Match the COSMAC VIP interpreter (Fx55/Fx65 increment I, 8xy6/8xyE shift Vy, 8xy1-3 reset VF)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    parser.add_argument("--dump-file", default=DUMP_FILE, help="Where to write machine state on exit or crash")
    return parser.parse_args(argv)


def build_computer(args):
    quirks = args.original_quirks
    c8 = C8Computer(increment_i=quirks, shift_vy=quirks, vf_reset=quirks)
    c8.load(read_rom(args.rom))
    return c8


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="[%(levelname)s]:  %(message)s")

    c8 = build_computer(args)

    pygame.init()
    window = pygame.display.set_mode((c8.screen.xsize * args.scale, c8.screen.ysize * args.scale))
    pygame.display.set_caption("CHIP-8 - {}".format(os.path.basename(args.rom)))
    window.fill(0)
    mywindow = C8Window(window, args.scale)

    run = True

    start_time = datetime.datetime.now()
    num_instr = 0

    timer_event = pygame.USEREVENT + 1
    pygame.time.set_timer(timer_event, 17)  # 17ms ~= 60Hz

    last_instruction_time = datetime.datetime.now()

    while run:
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                run = False
                write_dump(c8, args.dump_file)
            elif event.type == pygame.KEYDOWN:
                if event.key in KEYMAPPING:
                    c8.set_key(KEYMAPPING[event.key])
            elif event.type == pygame.KEYUP:
                if event.key in KEYMAPPING:
                    c8.release_key(KEYMAPPING[event.key])
            elif event.type == timer_event:
                c8.tick_timers()

        if not run:
            break

        curtime = datetime.datetime.now()
        elapsed = (curtime - last_instruction_time).total_seconds() * 1000000
        if elapsed >= args.instruction_delay:
            try:
                if c8.step():
                    num_instr += 1
                last_instruction_time = curtime
            except Exception:
                write_dump(c8, args.dump_file)
                pygame.display.flip()
                raise
            if c8.screen.needs_draw:
                mywindow.render(c8.screen)
    end_time = datetime.datetime.now()
    duration = (end_time - start_time).total_seconds()

    print("Start: {}".format(start_time))
    print("End: {}".format(end_time))
    print("Duration: {} sec.".format(duration))
    if duration > 0:
        print("Performance: {} instructions per second".format(num_instr / duration))
    print("Screen num renders: {}".format(mywindow.num_renders))
    if mywindow.num_renders:
        print("Average microseconds per render: {}".format(
            (1000000 * mywindow.render_time_ps) / mywindow.num_renders))

    pygame.quit()


if __name__ == "__main__":
    # call the main function
    main()
