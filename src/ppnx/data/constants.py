import astropy.constants as const
import astropy.units as u

# Default unit system is AU, solar masses, and days, the same one used by REBOUNDx
# simulations set up with sim.units = ("AU", "Msun", "day")
SPEED_OF_LIGHT = const.c.to(u.au / u.day).value

GRAVITATIONAL_CONSTANT = const.G.to(u.au**3 / (u.M_sun * u.day**2)).value

# Fixed-point iteration of the implicit corrector. Post-Newtonian corrections
# typically settle in 2-3 rounds, the cap just keeps pathological systems bounded.
DEFAULT_MAX_ITERATIONS = 10

# Threshold on the largest squared relative change between successive rounds
CONVERGENCE_TOLERANCE = 1e-30
