from array import array
import logging
import random

MEMORY_SIZE = 4096
PROGRAM_START = 0x200
MAX_ROM_SIZE = MEMORY_SIZE - PROGRAM_START
FONT_START = 0x000
FONT_CHAR_SIZE = 5
NUM_REGISTERS = 16
STACK_DEPTH = 16
NUM_KEYS = 16

# Config options to cover differences between modern CHIP-8 interpreters and the original
INCREMENT_I_FX55_FX65 = False  # False is the modern way; True matches original
SHIFT_VY_8XY6_8XYE = False  # False is the modern way; True matches original
VF_RESET_8XY1_8XY3 = False  # False is the modern way; True matches original

FONT = [0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
        0x20, 0x60, 0x20, 0x20, 0x70,  # 1
        0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
        0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
        0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
        0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
        0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
        0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
        0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
        0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
        0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
        0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
        0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
        0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
        0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
        0xF0, 0x80, 0xF0, 0x80, 0x80]  # F

logger = logging.getLogger(__name__)


class C8Exception(Exception):
    def __init__(self, message, opcode=None, address=None):
        super().__init__(message)
        self.opcode = opcode
        self.address = address

    def __str__(self):
        where = []
        if self.opcode is not None:
            where.append("opcode 0x{:04X}".format(self.opcode))
        if self.address is not None:
            where.append("at 0x{:03X}".format(self.address))
        text = super().__str__()
        if where:
            text += " ({})".format(" ".join(where))
        return text


class InvalidOpCodeException(C8Exception):
    pass


class StackOverflowException(C8Exception):
    pass


class StackUnderflowException(C8Exception):
    pass


class MemoryAccessException(C8Exception):
    pass


class ROMTooLargeException(C8Exception):
    pass


class MachineHaltedException(C8Exception):
    pass


class C8Screen:
    '''
    The 64x32 monochrome framebuffer.  Each row is a single integer with column 0 in the most significant
    of its 64 bits.  needs_draw is raised on every clear or sprite draw and lowered by whoever renders it.
    '''

    def __init__(self, xsize=64, ysize=32):
        self.xsize = xsize
        self.ysize = ysize
        self.rows = [0] * ysize
        self.needs_draw = False

    def clear(self):
        for i in range(self.ysize):
            self.rows[i] = 0
        self.needs_draw = True

    def pixel(self, x, y):
        return (self.rows[y] >> (self.xsize - 1 - x)) & 1

    def xor8px(self, x, y, val):
        # xors the 8 cells from (x,y) to (x+7,y) with the bits in val, wrapping at the right edge
        assert 0 <= val <= 0xFF
        y %= self.ysize
        row = self.rows[y]
        collision = False
        for i in range(8):
            if (val << i) & 0x80:
                mask = 1 << (self.xsize - 1 - (x + i) % self.xsize)
                if row & mask:
                    collision = True
                row ^= mask
        self.rows[y] = row
        self.needs_draw = True
        return collision


class C8Computer:

    def __init__(self, increment_i=INCREMENT_I_FX55_FX65, shift_vy=SHIFT_VY_8XY6_8XYE,
                 vf_reset=VF_RESET_8XY1_8XY3, rng=None):
        # 4096 Bytes of RAM
        self.RAM = array('B', [0] * MEMORY_SIZE)
        # The 16 registers are named V0..VF
        self.V = array('B', [0] * NUM_REGISTERS)
        # Special-purpose 16-bit register; low 12 are used for an address
        self.I = 0
        self.delay_register = 0
        self.sound_register = 0
        # Program Counter
        self.PC = PROGRAM_START
        # SP is the number of frames in use; stack[SP - 1] is the most recent return address
        self.stack = array('H', [0] * STACK_DEPTH)
        self.SP = 0
        self.load_font_sprites()
        self.screen = C8Screen()
        self.keypad = 0  # bit i set while key i is held; used for Ex9E and ExA1
        self.waiting_for_key = False
        self.key_wait_register = None
        self.halted = False

        self.increment_i = increment_i
        self.shift_vy = shift_vy
        self.vf_reset = vf_reset
        self.rng = rng if rng is not None else random.Random()

        # Using a list of functions to speed the lookup, vs. doing a big nested
        # if/else.  There is one instruction for each of the high-order nibbles
        # 1, 2, 3, 4, 5, 6, 7, 9, A, B, C and D.  The others (0, 8, E, F) have
        # multiple.
        self.operation_list = [
            self._0_opcodes, self._1nnn, self._2nnn, self._3xkk, self._4xkk, self._5xy0,
            self._6xkk, self._7xkk, self._8_opcodes, self._9xy0, self._Annn, self._Bnnn,
            self._Cxkk, self._Dxyn, self._E_opcodes, self._F_opcodes
        ]

        # opcodes beginning with 8 can be determined based on the least-significant
        # nibble (0..7 and E)
        self._8_operations = [
            self._8xy0, self._8xy1, self._8xy2, self._8xy3, self._8xy4, self._8xy5,
            self._8xy6, self._8xy7, None, None, None, None, None, None, self._8xyE, None
        ]

        # opcodes beginning with F can be determined based on the least_significant
        # byte (07, 0A, 15, 18, 1E, 29, 33, 55, and 65).  Since this is sparse,
        # will use a dictionary.
        self._F_operations = {
            0x07: self._Fx07,
            0x0A: self._Fx0A,
            0x15: self._Fx15,
            0x18: self._Fx18,
            0x1E: self._Fx1E,
            0x29: self._Fx29,
            0x33: self._Fx33,
            0x55: self._Fx55,
            0x65: self._Fx65
        }

    def dump_state(self, include_ram=False):
        lines = ["Memory: {} bytes".format(len(self.RAM)),
                 "PC: 0x{:03X}".format(self.PC)]
        if self.PC <= MEMORY_SIZE - 2:
            lines.append("Next instr.: 0x{:04X}".format(self.RAM[self.PC] << 8 | self.RAM[self.PC + 1]))
        lines.append("I: 0x{:03X}".format(self.I))
        for row in range(4):
            lines.append("\t".join("V{:X}: 0x{:02X}".format(i, self.V[i]) for i in range(row * 4, row * 4 + 4)))
        lines.append("delay register: 0x{:02X}".format(self.delay_register))
        lines.append("sound register: 0x{:02X}".format(self.sound_register))
        lines.append("SP: {}".format(self.SP))
        lines.append("stack: [{}]".format(", ".join("0x{:03X}".format(self.stack[i]) for i in range(self.SP))))
        if self.waiting_for_key:
            lines.append("waiting for key into V{:X}".format(self.key_wait_register))
        if include_ram:
            lines.append("")
            lines.append("RAM:")
            for start in range(0, MEMORY_SIZE, 32):
                lines.append("0x{:03X} - 0x{:03X}:  {}".format(
                    start, start + 31, bytes(self.RAM[start:start + 32]).hex().upper()))
        return "\n".join(lines) + "\n"

    def load_font_sprites(self):
        '''
        Video in the CHIP-8 is sprite-driven.  Each sprite is 8 pixels wide, and from 1-15 pixels high.
        A font representing 0..9 + A..F is required for proper operation.  Example for the character 2:

                   ****....
                   ...*....
                   ****....
                   *.......
                   ****....

        The font has to live in RAM in range 0x000-0x1FF, which is reserved for the interpreter.  Since
        we are not using any of that RAM for our actual interpreter, we will put the font starting at
        FONT_START.
        '''
        self.RAM[FONT_START:FONT_START + len(FONT)] = array('B', FONT)

    def load(self, rom):
        if len(rom) > MAX_ROM_SIZE:
            raise ROMTooLargeException("ROM is {} bytes; at most {} fit in RAM".format(len(rom), MAX_ROM_SIZE))
        # array() rejects values outside 0..255 before RAM is touched
        data = array('B', rom)
        self.RAM[PROGRAM_START:PROGRAM_START + len(data)] = data
        logger.debug("Loaded %d byte ROM at 0x%03X", len(data), PROGRAM_START)

    def set_key(self, key):
        self._check_key(key)
        self.keypad |= 1 << key
        if self.waiting_for_key:
            self.V[self.key_wait_register] = key
            logger.debug("Key %X stored in V%X, resuming execution", key, self.key_wait_register)
            self.waiting_for_key = False
            self.key_wait_register = None

    def release_key(self, key):
        self._check_key(key)
        self.keypad &= ~(1 << key)

    def is_key_pressed(self, key):
        return bool(self.keypad >> key & 1)

    @staticmethod
    def _check_key(key):
        if not 0 <= key < NUM_KEYS:
            raise ValueError("key must be in 0x0..0xF, got {!r}".format(key))

    def tick_timers(self):
        # The host calls this at 60Hz
        if self.delay_register > 0:
            self.delay_register -= 1
        if self.sound_register > 0:
            self.sound_register -= 1

    def _check_range(self, start, length, opcode):
        if start + length > MEMORY_SIZE:
            raise MemoryAccessException(
                "access to 0x{:X}..0x{:X} is past the end of RAM".format(start, start + length - 1), opcode)

    def _check_write(self, start, length, opcode):
        # The font table is read-only once installed
        self._check_range(start, length, opcode)
        if start < FONT_START + len(FONT) and start + length > FONT_START:
            raise MemoryAccessException(
                "write to 0x{:X}..0x{:X} overlaps the font table".format(start, start + length - 1), opcode)

    def fetch(self):
        # Each instruction is two bytes, most significant first
        if self.PC > MEMORY_SIZE - 2:
            raise MemoryAccessException("PC 0x{:X} is past the end of RAM".format(self.PC), address=self.PC)
        if self.PC % 2:
            raise MemoryAccessException("PC 0x{:X} is not instruction-aligned".format(self.PC), address=self.PC)
        return self.RAM[self.PC] << 8 | self.RAM[self.PC + 1]

    def _0_opcodes(self, opcode, vx, vy, n, kk, nnn):
        if opcode == 0x00E0:
            # 00E0 - CLS
            # clear the screen
            self.screen.clear()
            return True
        elif opcode == 0x00EE:
            # 00EE - RET
            # Return from a subroutine
            if self.SP == 0:
                raise StackUnderflowException("return with an empty stack", opcode)
            self.SP -= 1
            self.PC = self.stack[self.SP]
            return False
        raise InvalidOpCodeException("unknown instruction", opcode)

    def _1nnn(self, opcode, vx, vy, n, kk, nnn):
        # 1nnn - JP addr
        # Jump to location nnn
        self.PC = nnn
        return False

    def _2nnn(self, opcode, vx, vy, n, kk, nnn):
        # 2nnn - CALL addr
        # Call subroutine at nnn.  The address of the next instruction is pushed for RET.
        if self.SP == STACK_DEPTH:
            raise StackOverflowException("call with {} frames already on the stack".format(STACK_DEPTH), opcode)
        self.stack[self.SP] = self.PC + 2
        self.SP += 1
        self.PC = nnn
        return False

    def _3xkk(self, opcode, vx, vy, n, kk, nnn):
        # 3xkk - SE Vx, byte
        # Skip next instruction if Vx == kk
        if self.V[vx] == kk:
            self.PC += 2
        return True

    def _4xkk(self, opcode, vx, vy, n, kk, nnn):
        # 4xkk - SNE Vx, byte
        # Skip next instruction if Vx != kk
        if self.V[vx] != kk:
            self.PC += 2
        return True

    def _5xy0(self, opcode, vx, vy, n, kk, nnn):
        # 5xy0 - SE Vx, Vy
        # Skip next instruction if Vx == Vy
        if n != 0:
            raise InvalidOpCodeException("unknown instruction", opcode)
        if self.V[vx] == self.V[vy]:
            self.PC += 2
        return True

    def _6xkk(self, opcode, vx, vy, n, kk, nnn):
        # 6xkk - LD Vx, byte
        # Set Vx = kk
        self.V[vx] = kk
        return True

    def _7xkk(self, opcode, vx, vy, n, kk, nnn):
        # 7xkk - ADD Vx, byte
        # Add value in kk to vx, stores result in vx, does NOT set overflow flag
        self.V[vx] = (self.V[vx] + kk) & 0xFF
        return True

    def _8xy0(self, vx, vy):
        # 8xy0 - LD Vx, Vy
        # Set Vx = Vy
        self.V[vx] = self.V[vy]

    def _8xy1(self, vx, vy):
        # 8xy1 - OR Vx, Vy
        # Set Vx = Vx OR Vy.
        # Historical quirk: the original also set VF = 0
        self.V[vx] = self.V[vx] | self.V[vy]
        if self.vf_reset:
            self.V[0xF] = 0

    def _8xy2(self, vx, vy):
        # 8xy2 - AND Vx, Vy
        # Set Vx = Vx AND Vy
        self.V[vx] = self.V[vx] & self.V[vy]
        if self.vf_reset:
            self.V[0xF] = 0

    def _8xy3(self, vx, vy):
        # 8xy3 - XOR Vx, Vy
        # Set Vx = Vx XOR Vy
        self.V[vx] = self.V[vx] ^ self.V[vy]
        if self.vf_reset:
            self.V[0xF] = 0

    def _8xy4(self, vx, vy):
        # 8xy4 - ADD Vx, Vy
        # Set Vx = Vx + Vy, set VF = carry.  Must be done in this order.
        total = self.V[vx] + self.V[vy]
        self.V[vx] = total & 0xFF
        self.V[0xF] = 1 if total > 0xFF else 0

    def _8xy5(self, vx, vy):
        # 8xy5 - SUB Vx, Vy
        # Set Vx = Vx - Vy.  Set VF = NOT borrow (VF = 1 if Vx > Vy)
        notborrow = 1 if self.V[vx] > self.V[vy] else 0
        self.V[vx] = (self.V[vx] - self.V[vy]) & 0xFF
        self.V[0xF] = notborrow

    def _8xy6(self, vx, vy):
        # 8xy6 - SHR Vx, Vy
        # ORIGINAL IMPLEMENTATION: copy Vy into Vx, then shift Vx right by 1.
        # MODERN IMPLEMENTATION: shift Vx right by 1 in place
        # In both, VF is set to the least significant bit of Vx before the shift
        # See: https://tobiasvl.github.io/blog/write-a-chip-8-emulator/#8xy6-and-8xye-shift
        if self.shift_vy:
            self.V[vx] = self.V[vy]
        lsb = self.V[vx] & 0x1
        self.V[vx] = self.V[vx] >> 1
        self.V[0xF] = lsb

    def _8xy7(self, vx, vy):
        # 8xy7 - SUBN Vx, Vy
        # Set Vx = Vy - Vx.  Set VF = NOT borrow (VF = 1 if Vy > Vx)
        notborrow = 1 if self.V[vy] > self.V[vx] else 0
        self.V[vx] = (self.V[vy] - self.V[vx]) & 0xFF
        self.V[0xF] = notborrow

    def _8xyE(self, vx, vy):
        # 8xyE - SHL Vx, Vy
        # VF is set to the most significant bit of Vx before the shift
        if self.shift_vy:
            self.V[vx] = self.V[vy]
        msb = self.V[vx] >> 7
        self.V[vx] = (self.V[vx] << 1) & 0xFF
        self.V[0xF] = msb

    def _8_opcodes(self, opcode, vx, vy, n, kk, nnn):
        operation = self._8_operations[n]
        if operation is None:
            raise InvalidOpCodeException("unknown instruction", opcode)
        operation(vx, vy)
        return True

    def _9xy0(self, opcode, vx, vy, n, kk, nnn):
        # 9xy0 - SNE Vx, Vy
        # Skip next instruction if Vx != Vy
        if n != 0:
            raise InvalidOpCodeException("unknown instruction", opcode)
        if self.V[vx] != self.V[vy]:
            self.PC += 2
        return True

    def _Annn(self, opcode, vx, vy, n, kk, nnn):
        # Annn - LD I, addr
        # The value of register I is set to nnn
        self.I = nnn
        return True

    def _Bnnn(self, opcode, vx, vy, n, kk, nnn):
        # Bnnn - JP V0, addr
        # The program counter is set to nnn plus the value of V0.  Landing on an odd address or past 0xFFE faults on the next fetch.
        self.PC = nnn + self.V[0]
        return False

    def _Cxkk(self, opcode, vx, vy, n, kk, nnn):
        # Cxkk - RND Vx, byte
        # Set Vx = random byte AND kk
        self.V[vx] = self.rng.randint(0, 0xFF) & kk
        return True

    def _Dxyn(self, opcode, vx, vy, n, kk, nnn):
        # Dxyn - DRW Vx, Vy, nibble
        # Draw the n-byte sprite at I to (Vx, Vy), wrapping on both axes.  VF = 1 if any set pixel was erased.
        self._check_range(self.I, n, opcode)
        x = self.V[vx] % self.screen.xsize
        y = self.V[vy] % self.screen.ysize
        collision = 0
        for i in range(n):
            if self.screen.xor8px(x, y + i, self.RAM[self.I + i]):
                collision = 1
        self.V[0xF] = collision
        self.screen.needs_draw = True
        return True

    def _E_opcodes(self, opcode, vx, vy, n, kk, nnn):
        if kk == 0x9E:
            # Ex9E - SKP Vx
            # Skip next instruction if key with value of Vx is pressed
            if self.is_key_pressed(self.V[vx]):
                self.PC += 2
        elif kk == 0xA1:
            # ExA1 - SKNP Vx
            # Skip next instruction if key with value of Vx is NOT pressed
            if not self.is_key_pressed(self.V[vx]):
                self.PC += 2
        else:
            raise InvalidOpCodeException("unknown instruction", opcode)
        return True

    def _Fx07(self, opcode, vx):
        # Fx07 - LD Vx, DT
        # The value of the Delay Timer is placed into Vx.
        self.V[vx] = self.delay_register

    def _Fx0A(self, opcode, vx):
        # Fx0A - LD, Vx, Key
        # Wait for a key press, store the value of the key in Vx.  PC still moves past this instruction; step()
        # does nothing further until set_key() delivers a key.
        self.waiting_for_key = True
        self.key_wait_register = vx
        logger.debug("Waiting for a key to store in V%X", vx)

    def _Fx15(self, opcode, vx):
        # Fx15 - LD DT, Vx
        # Set Delay Timer = Vx
        self.delay_register = self.V[vx]

    def _Fx18(self, opcode, vx):
        # Fx18 - LD ST, Vx
        # Set Sound Timer = Vx
        self.sound_register = self.V[vx]

    def _Fx1E(self, opcode, vx):
        # Fx1E - Set I = I + Vx - do not set the overflow flag
        self.I = (self.I + self.V[vx]) & 0xFFFF

    def _Fx29(self, opcode, vx):
        # Fx29 - LD F, Vx
        # Set I = location of sprite for digit Vx ("F" = Font)
        self.I = FONT_START + FONT_CHAR_SIZE * (self.V[vx] & 0xF)

    def _Fx33(self, opcode, vx):
        # Fx33 - LD B, Vx
        # Store binary coded decimal value of Vx in memory locations I, I+1, I+2
        self._check_write(self.I, 3, opcode)
        val = self.V[vx]
        self.RAM[self.I] = val // 100
        self.RAM[self.I + 1] = val // 10 % 10
        self.RAM[self.I + 2] = val % 10

    def _Fx55(self, opcode, vx):
        # Fx55 - LD [I], Vx
        # Store registers V0 through Vx in memory starting at location I
        # Note that in the original CHIP-8 on the COSMAC VIP, I was incremented during this
        # loop.  See: https://laurencescotford.com/chip-8-on-the-cosmac-vip-loading-and-saving-variables/
        self._check_write(self.I, vx + 1, opcode)
        for i in range(vx + 1):
            self.RAM[self.I + i] = self.V[i]
        if self.increment_i:
            self.I += vx + 1

    def _Fx65(self, opcode, vx):
        # Fx65 - LD Vx, [I]
        # Read values from memory starting at location I into registers V0 through Vx
        self._check_range(self.I, vx + 1, opcode)
        for i in range(vx + 1):
            self.V[i] = self.RAM[self.I + i]
        if self.increment_i:
            self.I += vx + 1

    def _F_opcodes(self, opcode, vx, vy, n, kk, nnn):
        if kk not in self._F_operations:
            raise InvalidOpCodeException("unknown instruction", opcode)
        self._F_operations[kk](opcode, vx)
        return True

    def step(self):
        '''
        Execute one instruction.  Returns False without doing anything while blocked on Fx0A, True otherwise.

        Instructions have one of 6 patterns:
        All 4 nibbles fixed:
            00E0, 00EE
        Operation + nnn (address)
            1nnn, 2nnn, Annn, Bnnn
        Operation + Vx + kk (byte)
            3xkk, 4xkk, 6xkk, 7xkk, Cxkk
        Operation + Vx + Vy + nibble-type
            5xy0, 8xy0, 8xy1, 8xy2, 8xy3,
            8xy4, 8xy5, 8xy6, 8xy7, 8xyE, 9xy0
        Operation + Vx + Vy + n (nibble)
            Dxyn
        Operation + Vx + byte-type
            Ex9E, ExA1, Fx07, Fx0A, Fx15,
            Fx18, Fx1E, Fx29, Fx33, Fx55,
            Fx65

        To minimize redundant code, calculate all the possible ways
        to parse the opcode and then later use only the ones that are needed.

        Any fault halts the machine: the exception gets the faulting address filled in and is re-raised,
        and every later step() raises MachineHaltedException.
        '''
        if self.halted:
            raise MachineHaltedException("machine halted after a fatal error", address=self.PC)
        if self.waiting_for_key:
            return False

        address = self.PC
        try:
            opcode = self.fetch()
            operation = opcode >> 12
            vx = opcode >> 8 & 0xF
            vy = opcode >> 4 & 0xF
            n = opcode & 0xF
            nnn = opcode & 0xFFF
            kk = opcode & 0xFF
            increment_pc = self.operation_list[operation](opcode, vx, vy, n, kk, nnn)
        except C8Exception as e:
            if e.address is None:
                e.address = address
            self.halted = True
            logger.error("Halted: %s", e)
            raise
        if increment_pc:
            self.PC += 2
        return True
